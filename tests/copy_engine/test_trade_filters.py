"""
Trade Filter Tests.

============================================================
PURPOSE
============================================================
Unit tests for TradeFilterService.

TEST CATEGORIES:
- Attribute filters (stage 1)
- Exposure limits (stage 2)
- Filter summary

============================================================
"""

from decimal import Decimal

import pytest

from copy_engine.filters import TradeFilterService
from copy_engine.reference_data import StaticReferenceData
from copy_engine.types import AssetType, ExposureLimits, PositionData, TradeFilters

from conftest import make_relationship, make_trade


@pytest.fixture
def service(clock):
    return TradeFilterService(clock=clock)


def check(service, trade=None, filters=None, limits=None, balance="10000",
          positions=None, today_count=0, today_volume="0"):
    return service.should_copy_trade(
        trade or make_trade(),
        make_relationship(filters=filters, limits=limits),
        Decimal(balance),
        positions or {},
        today_count,
        Decimal(today_volume),
    )


# ============================================================
# STAGE 1: ATTRIBUTE FILTERS
# ============================================================

class TestAttributeFilters:
    """Tests for per-trade attribute filters."""

    def test_no_filters_accepts(self, service):
        result = check(service)

        assert result.should_copy is True
        assert result.skip_reason is None

    def test_penny_stock_rejected(self, service):
        """Test sub-$5 trades are rejected when penny stocks are skipped."""
        result = check(service, make_trade(price="3.50"), TradeFilters(skip_penny_stocks=True))

        assert result.should_copy is False
        assert result.skip_reason == "Penny stock ($3.50 < $5.00)"

    def test_penny_filter_ignores_unknown_price(self, service):
        """Test a trade without a price passes the penny filter."""
        result = check(service, make_trade(price=None), TradeFilters(skip_penny_stocks=True))

        assert result.should_copy is True

    def test_options_rejected(self, service):
        trade = make_trade(asset_type=AssetType.OPTION)

        result = check(service, trade, TradeFilters(skip_options=True))

        assert result.skip_reason == "Options trades disabled"

    def test_options_filter_ignores_stocks(self, service):
        result = check(service, make_trade(), TradeFilters(skip_options=True))

        assert result.should_copy is True

    @pytest.mark.parametrize("expiration", ["2026-03-10", "2026-03-10T20:00:00Z"])
    def test_zero_dte_rejected(self, service, expiration):
        """Test options expiring on the clock's date are rejected."""
        trade = make_trade(asset_type=AssetType.OPTION, expiration_date=expiration)

        result = check(service, trade, TradeFilters(skip_0dte_options=True))

        assert result.skip_reason == "0DTE options disabled"

    def test_zero_dte_accepts_later_expiry(self, service):
        trade = make_trade(asset_type=AssetType.OPTION, expiration_date="2026-03-11")

        result = check(service, trade, TradeFilters(skip_0dte_options=True))

        assert result.should_copy is True

    @pytest.mark.parametrize("expiration", ["soon", "2026-13-45"])
    def test_zero_dte_ignores_malformed_expiry(self, service, expiration):
        """Test unparseable expirations do not reject the trade."""
        trade = make_trade(asset_type=AssetType.OPTION, expiration_date=expiration)

        result = check(service, trade, TradeFilters(skip_0dte_options=True))

        assert result.should_copy is True

    def test_crypto_rejected(self, service):
        trade = make_trade(symbol="BTC", asset_type=AssetType.CRYPTO)

        result = check(service, trade, TradeFilters(skip_crypto=True))

        assert result.skip_reason == "Crypto trades disabled"

    def test_market_cap_below_min(self, service):
        filters = TradeFilters(filter_by_market_cap=True, min_market_cap=Decimal("3000"))

        result = check(service, make_trade(symbol="AAPL"), filters)

        assert result.skip_reason == "Market cap $2800.0B < min $3000.0B"

    def test_market_cap_above_max(self, service):
        filters = TradeFilters(filter_by_market_cap=True, max_market_cap=Decimal("1000"))

        result = check(service, make_trade(symbol="AAPL"), filters)

        assert result.skip_reason == "Market cap $2800.0B > max $1000.0B"

    def test_market_cap_unknown_symbol_passes(self, service):
        """Test symbols without reference data pass the market cap filter."""
        filters = TradeFilters(filter_by_market_cap=True, min_market_cap=Decimal("3000"))

        result = check(service, make_trade(symbol="XYZ"), filters)

        assert result.should_copy is True

    def test_price_below_min(self, service):
        filters = TradeFilters(filter_by_price=True, min_stock_price=Decimal("200"))

        result = check(service, make_trade(price="150"), filters)

        assert result.skip_reason == "Price $150.00 < min $200.00"

    def test_price_above_max(self, service):
        filters = TradeFilters(filter_by_price=True, max_stock_price=Decimal("100"))

        result = check(service, make_trade(price="150"), filters)

        assert result.skip_reason == "Price $150.00 > max $100.00"

    def test_sector_not_allowed(self, service):
        filters = TradeFilters(filter_by_sector=True, allowed_sectors=["Energy"])

        result = check(service, make_trade(symbol="AAPL"), filters)

        assert result.skip_reason == "Sector 'Technology' not in allowed list"

    def test_sector_blocked(self, service):
        filters = TradeFilters(filter_by_sector=True, blocked_sectors=["Technology"])

        result = check(service, make_trade(symbol="MSFT"), filters)

        assert result.skip_reason == "Sector 'Technology' is blocked"

    def test_custom_reference_data(self, clock):
        """Test lookups go through the injected reference data provider."""
        service = TradeFilterService(
            reference_data=StaticReferenceData(sectors={"ACME": "Industrials"}, market_caps={}),
            clock=clock,
        )
        filters = TradeFilters(filter_by_sector=True, blocked_sectors=["Industrials"])

        result = check(service, make_trade(symbol="ACME"), filters)

        assert result.skip_reason == "Sector 'Industrials' is blocked"


# ============================================================
# STAGE 2: EXPOSURE LIMITS
# ============================================================

class TestExposureLimits:
    """Tests for portfolio exposure limits."""

    def test_disabled_limits_are_ignored(self, service):
        """Test limits are not evaluated unless enabled."""
        limits = ExposureLimits(enabled=False, max_open_positions=1, max_daily_trades=1)

        result = check(service, limits=limits, today_count=10, positions={
            "MSFT": PositionData(quantity=Decimal("1"), value=Decimal("400")),
        })

        assert result.should_copy is True

    def test_max_open_positions(self, service):
        limits = ExposureLimits(enabled=True, max_open_positions=2)
        positions = {
            "MSFT": PositionData(quantity=Decimal("1"), value=Decimal("400")),
            "TSLA": PositionData(quantity=Decimal("1"), value=Decimal("250")),
        }

        result = check(service, limits=limits, positions=positions)

        assert result.skip_reason == "Max open positions reached (2)"

    def test_position_concentration(self, service):
        """Test a $1,500 trade is 15% of a $10,000 balance."""
        limits = ExposureLimits(enabled=True, max_position_concentration=Decimal("10"))

        result = check(service, limits=limits)

        assert result.skip_reason == "Position concentration 15.0% > max 10.0%"

    def test_position_concentration_includes_existing_value(self, service):
        limits = ExposureLimits(enabled=True, max_position_concentration=Decimal("18"))
        positions = {"AAPL": PositionData(quantity=Decimal("3"), value=Decimal("500"))}

        result = check(service, limits=limits, positions=positions)

        assert result.skip_reason == "Position concentration 20.0% > max 18.0%"

    def test_non_positive_balance_uses_fallback(self, service):
        """Test a zero balance is treated as $10,000."""
        limits = ExposureLimits(enabled=True, max_position_concentration=Decimal("10"))

        result = check(service, limits=limits, balance="0")

        assert result.skip_reason == "Position concentration 15.0% > max 10.0%"

    def test_unknown_price_uses_fallback_value(self, service):
        """Test a trade without a price is valued at $100 per share."""
        limits = ExposureLimits(enabled=True, max_position_concentration=Decimal("12"))

        result = check(service, make_trade(price=None), limits=limits)

        assert result.should_copy is True

    def test_sector_concentration(self, service):
        limits = ExposureLimits(enabled=True, max_sector_concentration=Decimal("30"))
        positions = {"MSFT": PositionData(quantity=Decimal("5"), value=Decimal("2000"))}

        result = check(service, limits=limits, positions=positions)

        assert result.skip_reason == "Sector 'Technology' concentration 35.0% > max 30.0%"

    def test_daily_trade_limit(self, service):
        limits = ExposureLimits(enabled=True, max_daily_trades=5)

        result = check(service, limits=limits, today_count=5)

        assert result.skip_reason == "Daily trade limit reached (5)"

    def test_daily_volume_limit(self, service):
        limits = ExposureLimits(enabled=True, max_daily_volume=Decimal("10000"))

        result = check(service, limits=limits, today_volume="9000")

        assert result.skip_reason == "Daily volume limit would be exceeded ($10500.00 > $10000.00)"

    def test_within_all_limits(self, service):
        limits = ExposureLimits(
            enabled=True,
            max_position_concentration=Decimal("50"),
            max_sector_concentration=Decimal("50"),
            max_open_positions=5,
            max_daily_trades=5,
            max_daily_volume=Decimal("50000"),
        )

        result = check(service, limits=limits, today_count=1, today_volume="1000")

        assert result.should_copy is True

    def test_attribute_filter_wins_over_limits(self, service):
        """Test stage 1 rejections are reported before stage 2 is evaluated."""
        filters = TradeFilters(skip_penny_stocks=True)
        limits = ExposureLimits(enabled=True, max_daily_trades=1)

        result = check(service, make_trade(price="2"), filters, limits, today_count=3)

        assert result.skip_reason.startswith("Penny stock")


# ============================================================
# SUMMARY TESTS
# ============================================================

class TestFilterSummary:
    """Tests for get_filter_summary."""

    def test_empty_summary(self, service):
        summary = service.get_filter_summary(make_relationship())

        assert summary == {"active_filters": [], "active_limits": [], "total_protections": 0}

    def test_lists_enabled_protections(self, service):
        relationship = make_relationship(
            filters=TradeFilters(
                skip_penny_stocks=True,
                skip_0dte_options=True,
                filter_by_market_cap=True,
                min_market_cap=Decimal("10"),
                filter_by_sector=True,
                blocked_sectors=["Energy", "Utilities"],
            ),
            limits=ExposureLimits(
                enabled=True,
                max_position_concentration=Decimal("20"),
                max_daily_volume=Decimal("50000"),
            ),
        )

        summary = service.get_filter_summary(relationship)

        assert summary["active_filters"] == [
            "Skip penny stocks (<$5)",
            "Skip 0DTE options",
            "Min market cap: $10B",
            "Blocked sectors: Energy, Utilities",
        ]
        assert summary["active_limits"] == [
            "Max position: 20%",
            "Max daily volume: $50,000",
        ]
        assert summary["total_protections"] == 6

    def test_limits_hidden_when_disabled(self, service):
        relationship = make_relationship(limits=ExposureLimits(enabled=False, max_daily_trades=3))

        summary = service.get_filter_summary(relationship)

        assert summary["active_limits"] == []
