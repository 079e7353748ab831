"""Rule-based signal strategy: indicators, sentiment, momentum and volume scoring."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from seismic_bot.app.config import StrategyConfig
from seismic_bot.app.indicators import (
    TechnicalIndicators,
    bollinger_bands,
    calculate_technical_indicators,
    extract_prices,
    macd,
    rsi,
    sma,
)


POSITIVE_KEYWORDS = (
    "bullish", "surge", "rally", "breakthrough", "adoption",
    "partnership", "growth", "gain", "up", "rise", "positive",
    "institutional", "milestone", "record", "soar", "jump",
)
NEGATIVE_KEYWORDS = (
    "crash", "bearish", "decline", "concern", "regulatory",
    "hack", "fall", "down", "negative", "risk", "fear",
    "ban", "lawsuit", "fraud", "scam", "drop", "plunge",
)
OPPORTUNITY_POSITIVE = ("bullish", "surge", "rally", "breakthrough", "adoption", "partnership")
OPPORTUNITY_NEGATIVE = ("crash", "bearish", "decline", "concern", "regulatory", "hack")
QUICK_POSITIVE = ("surge", "rally", "bullish", "gain")

WEEK_OF_HOURS = 168
OPPORTUNITY_THRESHOLD = 0.65


@dataclass(slots=True)
class SentimentResult:
    score: float
    positive_count: int
    negative_count: int
    article_count: int
    interpretation: str


@dataclass(slots=True)
class TradingDecision:
    signal: str
    confidence: float
    position_size: float
    stop_loss: float
    take_profit: float
    reasoning: str
    buy_score: float = 0.0
    sell_score: float = 0.0
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    technicals: dict[str, float] | None = None
    sentiment: dict[str, Any] | None = None
    momentum: float = 0.0
    volume_score: float = 0.5
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class Opportunity:
    coin: dict[str, Any]
    score: float
    technical_score: float
    sentiment_score: float
    momentum_score: float
    news_score: float
    reasoning: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class TradeParameters:
    entry_price: float
    trade_amount: float
    position_size: float
    stop_loss_price: float
    take_profit_price: float
    potential_loss: float
    potential_profit: float
    risk_reward_ratio: float

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass(slots=True)
class TradePlan:
    should_trade: bool
    reason: str | None = None
    coin: dict[str, Any] | None = None
    decision: TradingDecision | None = None
    trade_params: TradeParameters | None = None
    market_context: dict[str, Any] | None = None
    top_opportunities: list[Opportunity] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def _article_text(article: dict[str, Any]) -> str:
    return f"{article.get('title') or ''} {article.get('description') or ''}".lower()


def interpret_sentiment(score: float) -> str:
    if score >= 0.7:
        return "Very Positive"
    if score >= 0.6:
        return "Positive"
    if score >= 0.4:
        return "Neutral"
    if score >= 0.3:
        return "Negative"
    return "Very Negative"


class SignalStrategy:
    """Combines weighted factors into a BUY/SELL/HOLD decision with confidence."""

    def __init__(self, settings: StrategyConfig | None = None, logger: Any | None = None) -> None:
        self.settings = settings or StrategyConfig()
        self.logger = logger

    def analyze_market(
        self,
        market: dict[str, Any],
        price_history: list[Any],
        news: list[dict[str, Any]] | None = None,
    ) -> TradingDecision:
        try:
            prices = extract_prices(price_history)
            technicals = calculate_technical_indicators(
                prices,
                rsi_period=self.settings.rsi_period,
                sma_short_period=self.settings.sma_short_period,
                sma_long_period=self.settings.sma_long_period,
            )
            sentiment = self.analyze_news_sentiment(news or [])
            momentum = self.calculate_momentum(market, prices)
            volume_score = self.analyze_volume(market)
            decision = self.generate_trading_signal(technicals, sentiment, momentum, volume_score)
            self._info(
                "Strategy: coin={} price={} rsi={:.2f} sentiment={:.2f} momentum={:.2f} -> {} ({:.1f}%)",
                market.get("id") or market.get("name"),
                market.get("current_price"),
                technicals.rsi,
                sentiment.score,
                momentum,
                decision.signal,
                decision.confidence * 100,
            )
            return decision
        except Exception as exc:  # noqa: BLE001
            self._error("Strategy analysis error: {}", exc)
            return TradingDecision(
                signal="HOLD",
                confidence=0.5,
                position_size=0.0,
                stop_loss=self.settings.stop_loss_percent,
                take_profit=self.settings.take_profit_percent,
                reasoning="Error in analysis, defaulting to HOLD",
                error=str(exc),
            )

    def analyze_news_sentiment(self, news: list[dict[str, Any]]) -> SentimentResult:
        score = 0.5
        positive = 0
        negative = 0
        for article in news:
            text = _article_text(article)
            for keyword in POSITIVE_KEYWORDS:
                if keyword in text:
                    positive += 1
                    score += 0.02
            for keyword in NEGATIVE_KEYWORDS:
                if keyword in text:
                    negative += 1
                    score -= 0.02

        score = _clamp(score)
        return SentimentResult(
            score=score,
            positive_count=positive,
            negative_count=negative,
            article_count=len(news),
            interpretation=interpret_sentiment(score),
        )

    def calculate_momentum(self, market: dict[str, Any], prices: list[float]) -> float:
        momentum_24h = float(market.get("price_change_percentage_24h") or 0.0)
        momentum_7d = 0.0
        if len(prices) >= WEEK_OF_HOURS:
            week_ago = prices[-WEEK_OF_HOURS]
            if week_ago:
                momentum_7d = (prices[-1] - week_ago) / week_ago * 100.0
        return momentum_24h * 0.6 + momentum_7d * 0.4

    def analyze_volume(self, market: dict[str, Any]) -> float:
        current_volume = float(market.get("total_volume") or 0.0)
        avg_volume = float(market.get("market_cap") or 0.0) / 100.0
        if current_volume == 0 or avg_volume == 0:
            return 0.5

        ratio = current_volume / avg_volume
        if ratio > 1.5:
            return 0.8
        if ratio > 0.7:
            return 0.6
        return 0.4

    def generate_trading_signal(
        self,
        technicals: TechnicalIndicators,
        sentiment: SentimentResult,
        momentum: float,
        volume_score: float,
    ) -> TradingDecision:
        cfg = self.settings
        weights = cfg.weights
        buy_score = 0.0
        sell_score = 0.0

        if technicals.rsi < cfg.rsi_oversold:
            buy_score += 0.3 * weights.technicals
        elif technicals.rsi > cfg.rsi_overbought:
            sell_score += 0.3 * weights.technicals

        if technicals.sma20 > technicals.sma50:
            buy_score += 0.25 * weights.technicals
        elif technicals.sma20 < technicals.sma50:
            sell_score += 0.25 * weights.technicals

        if technicals.macd > technicals.signal:
            buy_score += 0.2 * weights.technicals
        else:
            sell_score += 0.2 * weights.technicals

        if sentiment.score > 0.6:
            buy_score += (sentiment.score - 0.5) * weights.sentiment
        elif sentiment.score < 0.4:
            sell_score += (0.5 - sentiment.score) * weights.sentiment

        if momentum > 3:
            buy_score += (momentum / 10.0) * weights.momentum
        elif momentum < -3:
            sell_score += (abs(momentum) / 10.0) * weights.momentum

        # high volume amplifies whichever side leads
        if volume_score > 0.7:
            if buy_score > sell_score:
                buy_score += weights.volume
            else:
                sell_score += weights.volume

        signal = "HOLD"
        if buy_score > sell_score and buy_score > cfg.min_confidence:
            signal = "BUY"
            confidence = min(buy_score, 1.0)
        elif sell_score > buy_score and sell_score > cfg.min_confidence:
            signal = "SELL"
            confidence = min(sell_score, 1.0)
        else:
            confidence = max(buy_score, sell_score)

        position_size = min(confidence * cfg.max_position_size, cfg.max_position_size)
        take_profit = cfg.take_profit_percent * (confidence / 0.7)

        return TradingDecision(
            signal=signal,
            confidence=confidence,
            position_size=position_size,
            stop_loss=cfg.stop_loss_percent,
            take_profit=take_profit,
            reasoning=self._generate_reasoning(signal, technicals, sentiment, momentum, volume_score),
            buy_score=buy_score,
            sell_score=sell_score,
            technicals=technicals.to_dict(),
            sentiment=asdict(sentiment),
            momentum=momentum,
            volume_score=volume_score,
        )

    def _generate_reasoning(
        self,
        signal: str,
        technicals: TechnicalIndicators,
        sentiment: SentimentResult,
        momentum: float,
        volume_score: float,
    ) -> str:
        reasons: list[str] = []

        if technicals.rsi < 35:
            reasons.append(f"Oversold (RSI: {technicals.rsi:.1f})")
        elif technicals.rsi > 65:
            reasons.append(f"Overbought (RSI: {technicals.rsi:.1f})")

        if technicals.sma20 > technicals.sma50:
            reasons.append("Bullish moving average crossover")
        elif technicals.sma20 < technicals.sma50:
            reasons.append("Bearish moving average crossover")

        if technicals.macd > 0:
            reasons.append("Positive MACD momentum")

        if sentiment.score > 0.6:
            reasons.append(f"Positive sentiment ({sentiment.score * 100:.0f}%)")
        elif sentiment.score < 0.4:
            reasons.append(f"Negative sentiment ({sentiment.score * 100:.0f}%)")

        if momentum > 3:
            reasons.append(f"Strong upward momentum (+{momentum:.1f}%)")
        elif momentum < -3:
            reasons.append(f"Strong downward momentum ({momentum:.1f}%)")

        if volume_score > 0.7:
            reasons.append("High trading volume confirms signal")

        if reasons:
            return f"{signal}: {'. '.join(reasons)}"
        return f"{signal} based on neutral market conditions"

    # Opportunity ranking across the top coins.

    def score_opportunities(
        self,
        coins: list[dict[str, Any]],
        news: list[dict[str, Any]],
        limit: int = 20,
    ) -> list[Opportunity]:
        scored: list[Opportunity] = []
        for coin in coins[:limit]:
            try:
                technical = self._technical_score(coin)
                sentiment = self._coin_sentiment_score(coin, news)
                momentum = self._momentum_score(coin)
                news_score = self._news_score(coin, news)
            except (TypeError, ValueError, ZeroDivisionError) as exc:
                self._error("Error scoring {}: {}", coin.get("symbol"), exc)
                continue

            score = technical * 0.35 + sentiment * 0.25 + momentum * 0.25 + news_score * 0.15
            reasons: list[str] = []
            prices = self._sparkline(coin)
            if len(prices) >= 50 and rsi(prices) < 35:
                reasons.append("Oversold conditions (RSI)")
            if float(coin.get("price_change_percentage_24h") or 0.0) > 3:
                reasons.append("Strong upward momentum")
            if sentiment > 0.5:
                reasons.append("Positive market sentiment")

            scored.append(
                Opportunity(
                    coin=coin,
                    score=score,
                    technical_score=technical,
                    sentiment_score=sentiment,
                    momentum_score=momentum,
                    news_score=news_score,
                    reasoning=", ".join(reasons) or "Neutral market conditions",
                )
            )
        return sorted(scored, key=lambda item: item.score, reverse=True)

    def analyze_and_trade(
        self,
        coins: list[dict[str, Any]],
        news: list[dict[str, Any]],
        balance: float,
        existing_positions: list[dict[str, Any]] | None = None,
    ) -> TradePlan:
        """Pick the best-ranked coin not already held and size an entry for it.

        ``existing_positions`` are dashboard rows; an active row's ``asset`` is
        matched against each coin's symbol, name and id, case-insensitively.
        """
        try:
            held = {
                str(position.get("asset") or "").lower()
                for position in existing_positions or []
                if position.get("status", "Active") == "Active"
            }
            available = [coin for coin in coins if not held & self._coin_keys(coin)]
            opportunities = self.score_opportunities(available, news)
            best = opportunities[0] if opportunities else None
            if best is None or best.score < OPPORTUNITY_THRESHOLD:
                return TradePlan(
                    should_trade=False,
                    reason="No high-confidence opportunities found",
                    top_opportunities=opportunities[:3],
                )

            coin = best.coin
            decision = self.analyze_market(coin, (coin.get("sparkline_in_7d") or {}).get("price") or [], news)
            params = self.calculate_trade_parameters(decision, float(coin.get("current_price") or 0.0), balance)
            self._info(
                "Best opportunity {} score={:.2f} -> {} ({:.1f}%)",
                coin.get("symbol"),
                best.score,
                decision.signal,
                decision.confidence * 100,
            )
            return TradePlan(
                should_trade=decision.confidence > 0.7 and decision.signal == "BUY",
                coin=coin,
                decision=decision,
                trade_params=params,
                market_context={
                    "sentiment": best.sentiment_score,
                    "technicals": best.technical_score,
                    "news_impact": best.news_score,
                },
                top_opportunities=opportunities[:3],
            )
        except Exception as exc:  # noqa: BLE001
            self._error("Strategy analysis error: {}", exc)
            return TradePlan(should_trade=False, error=str(exc))

    @staticmethod
    def _coin_keys(coin: dict[str, Any]) -> set[str]:
        return {str(coin.get(key) or "").lower() for key in ("symbol", "name", "id")} - {""}

    def calculate_trade_parameters(
        self,
        decision: TradingDecision,
        entry_price: float,
        balance: float,
    ) -> TradeParameters:
        position_size = min(decision.position_size, 0.3)
        trade_amount = balance * position_size
        stop_loss_price = entry_price * (1 + decision.stop_loss)
        take_profit_price = entry_price * (1 + decision.take_profit)
        potential_loss = trade_amount * abs(decision.stop_loss)
        potential_profit = trade_amount * decision.take_profit
        ratio = potential_profit / potential_loss if potential_loss else 0.0
        return TradeParameters(
            entry_price=entry_price,
            trade_amount=trade_amount,
            position_size=position_size * 100,
            stop_loss_price=stop_loss_price,
            take_profit_price=take_profit_price,
            potential_loss=potential_loss,
            potential_profit=potential_profit,
            risk_reward_ratio=ratio,
        )

    def _sparkline(self, coin: dict[str, Any]) -> list[float]:
        sparkline = coin.get("sparkline_in_7d") or {}
        return extract_prices(sparkline.get("price") or [])

    def _technical_score(self, coin: dict[str, Any]) -> float:
        prices = self._sparkline(coin)
        if len(prices) < 50:
            return 0.5

        value = rsi(prices)
        sma20 = sma(prices, 20)
        sma50 = sma(prices, 50)
        current = prices[-1]
        macd_result = macd(prices)
        bands = bollinger_bands(prices, 20, 2)

        score = 0.5
        if value < 30:
            score += 0.2
        elif value > 70:
            score -= 0.2
        elif 40 < value < 60:
            score += 0.1

        if current > sma20 > sma50:
            score += 0.15
        elif current < sma20 < sma50:
            score -= 0.15

        if macd_result.histogram > 0 and macd_result.signal_line > 0:
            score += 0.1
        elif macd_result.histogram < 0 and macd_result.signal_line < 0:
            score -= 0.1

        if current < bands.lower:
            score += 0.05
        elif current > bands.upper:
            score -= 0.05
        return _clamp(score)

    def _relevant_news(self, coin: dict[str, Any], news: list[dict[str, Any]]) -> list[dict[str, Any]]:
        symbol = str(coin.get("symbol") or "").lower()
        name = str(coin.get("name") or "").lower()
        relevant = []
        for article in news:
            title = str(article.get("title") or "").lower()
            if (symbol and symbol in title) or (name and name in title):
                relevant.append(article)
        return relevant

    def _coin_sentiment_score(self, coin: dict[str, Any], news: list[dict[str, Any]]) -> float:
        score = 0.5
        for article in self._relevant_news(coin, news):
            title = str(article.get("title") or "").lower()
            score += 0.05 * sum(1 for word in OPPORTUNITY_POSITIVE if word in title)
            score -= 0.05 * sum(1 for word in OPPORTUNITY_NEGATIVE if word in title)
        return _clamp(score)

    def _momentum_score(self, coin: dict[str, Any]) -> float:
        change_24h = float(coin.get("price_change_percentage_24h") or 0.0)
        change_7d = float(coin.get("price_change_percentage_7d_in_currency") or 0.0)
        volume = float(coin.get("total_volume") or 0.0)
        market_cap = float(coin.get("market_cap") or 0.0)

        score = 0.5
        if change_24h > 5:
            score += 0.2
        elif change_24h < -5:
            score -= 0.2
        elif change_24h > 0:
            score += 0.1

        if change_7d > 10:
            score += 0.15
        elif change_7d < -10:
            score -= 0.15

        if market_cap > 0 and volume / market_cap > 0.1:
            score += 0.05
        return _clamp(score)

    def _news_score(self, coin: dict[str, Any], news: list[dict[str, Any]]) -> float:
        relevant = self._relevant_news(coin, news)
        if not relevant:
            return 0.5

        cutoff = datetime.now(UTC) - timedelta(hours=24)
        recent = 0
        for article in relevant:
            published = _parse_time(article.get("published_at"))
            if published is not None and published > cutoff:
                recent += 1
        return min(1.0, 0.5 + min(recent * 0.05, 0.3))

    def _info(self, message: str, *args: object) -> None:
        if self.logger is not None and hasattr(self.logger, "info"):
            self.logger.info(message, *args)

    def _error(self, message: str, *args: object) -> None:
        if self.logger is not None and hasattr(self.logger, "error"):
            self.logger.error(message, *args)


def quick_market_signal(prices: dict[str, Any], news: list[dict[str, Any]]) -> dict[str, Any]:
    """Coarse BTC signal: 24h change above 1% with upbeat headlines means Buy."""
    if news:
        total = 0.0
        for article in news:
            text = _article_text(article)
            total += 0.5 if any(word in text for word in QUICK_POSITIVE) else -0.2
        sentiment = total / len(news)
    else:
        sentiment = 0.0

    btc_change = float((prices.get("bitcoin") or {}).get("usd_24h_change") or 0.0)
    signal = "Buy" if btc_change > 1 and sentiment > 0.3 else "Hold"
    return {"sentiment": round(sentiment, 1), "signal": signal}


def _parse_time(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
