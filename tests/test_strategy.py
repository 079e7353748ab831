"""Tests for rule-based signal scoring."""
import pytest

from seismic_bot.app.config import StrategyConfig
from seismic_bot.app.indicators import TechnicalIndicators
from seismic_bot.app.strategy import (
    Opportunity,
    SentimentResult,
    SignalStrategy,
    TradingDecision,
    interpret_sentiment,
    quick_market_signal,
)


def _technicals(**overrides) -> TechnicalIndicators:
    values = dict(
        rsi=50.0,
        sma20=100.0,
        sma50=100.0,
        macd=0.0,
        signal=0.0,
        histogram=0.0,
        bb_upper=100.0,
        bb_middle=100.0,
        bb_lower=100.0,
        current_price=100.0,
    )
    values.update(overrides)
    return TechnicalIndicators(**values)


def _sentiment(score: float) -> SentimentResult:
    return SentimentResult(
        score=score,
        positive_count=0,
        negative_count=0,
        article_count=0,
        interpretation=interpret_sentiment(score),
    )


def test_news_sentiment_moves_two_points_per_keyword() -> None:
    strategy = SignalStrategy()
    bullish = strategy.analyze_news_sentiment([{"title": "Bitcoin rally", "description": ""}])
    bearish = strategy.analyze_news_sentiment([{"title": "Exchange hack", "description": None}])

    assert bullish.score == pytest.approx(0.52)
    assert bullish.positive_count == 1
    assert bearish.score == pytest.approx(0.48)
    assert bearish.negative_count == 1


def test_news_sentiment_is_clamped() -> None:
    strategy = SignalStrategy()
    result = strategy.analyze_news_sentiment([{"title": "surge", "description": ""}] * 40)
    assert result.score == 1.0
    assert result.interpretation == "Very Positive"


def test_empty_news_is_neutral() -> None:
    result = SignalStrategy().analyze_news_sentiment([])
    assert result.score == 0.5
    assert result.interpretation == "Neutral"


def test_volume_score_bands() -> None:
    strategy = SignalStrategy()
    assert strategy.analyze_volume({"total_volume": 20e6, "market_cap": 1e9}) == 0.8
    assert strategy.analyze_volume({"total_volume": 8e6, "market_cap": 1e9}) == 0.6
    assert strategy.analyze_volume({"total_volume": 1e6, "market_cap": 1e9}) == 0.4
    assert strategy.analyze_volume({"total_volume": 0, "market_cap": 1e9}) == 0.5


def test_momentum_blends_24h_and_week_change() -> None:
    strategy = SignalStrategy()
    prices = [100.0] * 100 + [110.0] * 68
    momentum = strategy.calculate_momentum({"price_change_percentage_24h": 5.0}, prices)
    assert momentum == pytest.approx(5.0 * 0.6 + 10.0 * 0.4)


def test_strong_bullish_inputs_produce_buy() -> None:
    strategy = SignalStrategy()
    decision = strategy.generate_trading_signal(
        _technicals(rsi=25.0, sma20=110.0, sma50=100.0, macd=2.0, signal=1.0),
        _sentiment(0.9),
        20.0,
        0.8,
    )

    assert decision.signal == "BUY"
    assert decision.confidence == 1.0
    assert decision.position_size == pytest.approx(0.3)
    assert decision.stop_loss == pytest.approx(-0.05)
    assert decision.take_profit == pytest.approx(0.10 / 0.7)
    assert "Oversold" in decision.reasoning


def test_strong_bearish_inputs_produce_sell() -> None:
    strategy = SignalStrategy()
    decision = strategy.generate_trading_signal(
        _technicals(rsi=80.0, sma20=90.0, sma50=100.0, macd=-1.0, signal=-0.5),
        _sentiment(0.1),
        -25.0,
        0.8,
    )
    assert decision.signal == "SELL"
    assert decision.sell_score > decision.buy_score


def test_neutral_inputs_hold() -> None:
    decision = SignalStrategy().generate_trading_signal(_technicals(), _sentiment(0.5), 0.0, 0.5)
    assert decision.signal == "HOLD"
    assert decision.confidence == pytest.approx(0.2 * 0.35)
    assert decision.reasoning.startswith("HOLD")


def test_analyze_market_falls_back_to_hold_on_bad_input() -> None:
    decision = SignalStrategy().analyze_market({"price_change_percentage_24h": "n/a"}, [1, 2, 3], [])
    assert decision.signal == "HOLD"
    assert decision.confidence == 0.5
    assert decision.position_size == 0.0
    assert decision.error


def test_analyze_market_returns_technicals_snapshot() -> None:
    prices = [{"price": 100 + i} for i in range(60)]
    market = {"id": "bitcoin", "current_price": 159, "price_change_percentage_24h": 1.0}
    decision = SignalStrategy().analyze_market(market, prices, [])
    assert decision.technicals["current_price"] == 159
    assert decision.sentiment["score"] == 0.5


def test_min_confidence_comes_from_settings() -> None:
    strategy = SignalStrategy(StrategyConfig(min_confidence=0.05))
    decision = strategy.generate_trading_signal(
        _technicals(sma20=110.0, sma50=100.0, macd=1.0, signal=0.5), _sentiment(0.5), 0.0, 0.5
    )
    assert decision.signal == "BUY"


def test_score_opportunities_ranks_momentum_and_news() -> None:
    coins = [
        {"id": "cardano", "name": "Cardano", "symbol": "ada", "price_change_percentage_24h": -6.0},
        {"id": "solana", "name": "Solana", "symbol": "sol", "price_change_percentage_24h": 6.0},
    ]
    news = [{"title": "Solana rally on new partnership", "published_at": None}]

    ranked = SignalStrategy().score_opportunities(coins, news)

    assert [item.coin["id"] for item in ranked] == ["solana", "cardano"]
    assert ranked[0].sentiment_score == pytest.approx(0.6)
    assert "Strong upward momentum" in ranked[0].reasoning


def test_trade_parameters_cap_position_at_thirty_percent() -> None:
    decision = TradingDecision(
        signal="BUY",
        confidence=0.9,
        position_size=0.5,
        stop_loss=-0.05,
        take_profit=0.10,
        reasoning="",
    )
    params = SignalStrategy().calculate_trade_parameters(decision, entry_price=100.0, balance=10.0)

    assert params.trade_amount == pytest.approx(3.0)
    assert params.position_size == pytest.approx(30.0)
    assert params.stop_loss_price == pytest.approx(95.0)
    assert params.take_profit_price == pytest.approx(110.0)
    assert params.risk_reward_ratio == pytest.approx(2.0)


def test_quick_market_signal() -> None:
    prices = {"bitcoin": {"usd": 60000, "usd_24h_change": 2.5}}
    upbeat = [{"title": "BTC surge", "description": ""}, {"title": "ETH rally", "description": ""}]
    gloomy = [{"title": "quiet day", "description": ""}]

    assert quick_market_signal(prices, upbeat) == {"sentiment": 0.5, "signal": "Buy"}
    assert quick_market_signal(prices, gloomy) == {"sentiment": -0.2, "signal": "Hold"}
    assert quick_market_signal(prices, []) == {"sentiment": 0.0, "signal": "Hold"}


class RankedStrategy(SignalStrategy):
    """Scores coins from a fixed table and records which coins were offered."""

    def __init__(self, scores: dict[str, float]) -> None:
        super().__init__()
        self.scores = scores
        self.seen: list[str] = []

    def score_opportunities(self, coins, news, limit=20):
        self.seen = [coin["id"] for coin in coins]
        ranked = [
            Opportunity(
                coin=coin,
                score=self.scores[coin["id"]],
                technical_score=0.5,
                sentiment_score=0.6,
                momentum_score=0.7,
                news_score=0.5,
                reasoning="",
            )
            for coin in coins
        ]
        return sorted(ranked, key=lambda item: item.score, reverse=True)


def _top_coins() -> list[dict]:
    sparkline = {"price": [100.0 + i * 0.5 for i in range(60)]}
    return [
        {"id": "bitcoin", "name": "Bitcoin", "symbol": "btc", "current_price": 100.0, "sparkline_in_7d": sparkline},
        {"id": "ethereum", "name": "Ethereum", "symbol": "eth", "current_price": 50.0, "sparkline_in_7d": sparkline},
        {"id": "solana", "name": "Solana", "symbol": "sol", "current_price": 20.0, "sparkline_in_7d": sparkline},
        {"id": "cardano", "name": "Cardano", "symbol": "ada", "current_price": 1.0, "sparkline_in_7d": sparkline},
    ]


def test_analyze_and_trade_requires_best_score_of_065() -> None:
    strategy = RankedStrategy({"bitcoin": 0.64, "ethereum": 0.3, "solana": 0.5, "cardano": 0.2})

    plan = strategy.analyze_and_trade(_top_coins(), [], balance=10.0)

    assert plan.should_trade is False
    assert plan.reason == "No high-confidence opportunities found"
    assert [item.coin["id"] for item in plan.top_opportunities] == ["bitcoin", "solana", "ethereum"]
    assert plan.decision is None
    assert plan.trade_params is None


def test_analyze_and_trade_sizes_best_coin_at_threshold() -> None:
    strategy = RankedStrategy({"bitcoin": 0.65, "ethereum": 0.3, "solana": 0.5, "cardano": 0.2})

    plan = strategy.analyze_and_trade(_top_coins(), [], balance=10.0)

    assert plan.reason is None
    assert plan.coin["id"] == "bitcoin"
    assert plan.trade_params.entry_price == pytest.approx(100.0)
    assert plan.market_context == {"sentiment": 0.6, "technicals": 0.5, "news_impact": 0.5}
    assert plan.should_trade is (plan.decision.confidence > 0.7 and plan.decision.signal == "BUY")
    assert plan.to_dict()["decision"]["signal"] in {"BUY", "SELL", "HOLD"}


def test_analyze_and_trade_skips_held_coins() -> None:
    strategy = RankedStrategy({"bitcoin": 0.9, "ethereum": 0.3, "solana": 0.8, "cardano": 0.2})
    positions = [
        {"asset": "Bitcoin", "status": "Active"},
        {"asset": "SOL", "status": "Active"},
        {"asset": "Cardano", "status": "Closed"},
    ]

    plan = strategy.analyze_and_trade(_top_coins(), [], balance=10.0, existing_positions=positions)

    assert strategy.seen == ["ethereum", "cardano"]
    assert plan.should_trade is False
    assert [item.coin["id"] for item in plan.top_opportunities] == ["ethereum", "cardano"]


def test_analyze_and_trade_reports_errors() -> None:
    plan = SignalStrategy().analyze_and_trade(None, [], balance=1.0)

    assert plan.should_trade is False
    assert plan.error
