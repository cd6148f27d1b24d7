from smc_core import (
    BEARISH,
    BOS,
    BULLISH,
    POI,
    analyze_smc,
    analyze_structure,
    dedupe_pois,
)

from conftest import make_candle, negate_candles


def _swept_htf():
    # Swing lows 8.5 then 8 (the impulse low sweeps the prior low),
    # swing highs 10 then 12.
    return [
        make_candle(0, 8.8, 9.0, 8.7, 8.9),
        make_candle(1000, 8.9, 9.2, 8.5, 9.1),
        make_candle(2000, 9.1, 10.0, 8.8, 9.8),
        make_candle(3000, 9.5, 9.6, 8.0, 8.5),
        make_candle(4000, 9.2, 12.0, 9.0, 11.5),
        make_candle(5000, 11.5, 11.8, 10.0, 10.5),
    ]


def _swept_mtf():
    return [
        make_candle(3000, 8.5, 9.0, 8.2, 8.9),
        make_candle(3500, 9.5, 9.6, 9.0, 9.2),
        make_candle(4000, 9.2, 12.0, 9.1, 11.8),
    ]


def test_higher_high_yields_bos_and_discount_poi(htf_candles, mtf_candles, settings):
    result = analyze_structure(htf_candles, mtf_candles, settings)

    assert result.bos == [BOS(time=3000, price=10.0, direction=BULLISH)]
    assert result.pois == [POI(start_time=2250, end_time=3000, top=9.6, bottom=8.8, direction=BULLISH)]
    assert [d.kind for d in result.drawings] == ["BOS"]


def test_candle_above_discount_level_is_not_a_poi(htf_candles, mtf_candles, settings):
    # Impulse low 8, current high 12: level 9 with a 0.25 zone
    result = analyze_structure(htf_candles, mtf_candles, settings.replace(discount_zone=0.25))

    assert len(result.bos) == 1
    assert result.pois == []


def test_fvg_filter_requires_gap_two_candles_later(htf_candles, mtf_candles, settings):
    fvg_settings = settings.replace(use_fvg_filter=True)

    assert analyze_structure(htf_candles, mtf_candles, fvg_settings).pois == []

    gapped = [
        make_candle(2750, 10.0, 11.0, 9.7, 10.8) if c["time"] == 2750 else c
        for c in mtf_candles
    ]
    pois = analyze_structure(htf_candles, gapped, fvg_settings).pois
    assert [p.start_time for p in pois] == [2250]


def test_liquidity_filter_needs_a_prior_lower_low(htf_candles, mtf_candles, settings):
    sweep_settings = settings.replace(use_liquidity_sweep_filter=True)

    # No swing low precedes the impulse low
    assert analyze_structure(htf_candles, mtf_candles, sweep_settings).pois == []


def test_liquidity_filter_keeps_swept_leg(settings):
    result = analyze_structure(_swept_htf(), _swept_mtf(), settings.replace(use_liquidity_sweep_filter=True))

    assert BOS(time=4000, price=10.0, direction=BULLISH) in result.bos
    assert BOS(time=3000, price=8.5, direction=BEARISH) in result.bos
    # The bearish leg has no prior high to sweep, so only the bullish POI stays
    assert result.pois == [POI(start_time=3500, end_time=4000, top=9.6, bottom=9.0, direction=BULLISH)]


def test_mirrored_prices_give_bearish_structure(htf_candles, mtf_candles, settings):
    result = analyze_structure(negate_candles(htf_candles), negate_candles(mtf_candles), settings)

    assert result.bos == [BOS(time=3000, price=-10.0, direction=BEARISH)]
    assert result.pois == [POI(start_time=2250, end_time=3000, top=-8.8, bottom=-9.6, direction=BEARISH)]


def test_structure_is_deterministic(htf_candles, mtf_candles, settings):
    first = analyze_structure(htf_candles, mtf_candles, settings)
    second = analyze_structure(htf_candles, mtf_candles, settings)

    assert first == second


def test_dedupe_pois_sorts_and_drops_repeats():
    a = POI(start_time=20, end_time=50, top=2.0, bottom=1.0, direction=BULLISH)
    b = POI(start_time=10, end_time=40, top=3.0, bottom=2.0, direction=BEARISH)
    a_again = POI(start_time=20, end_time=60, top=2.0, bottom=1.0, direction=BULLISH)

    unique = dedupe_pois([a, b, a_again])

    assert unique == [b, a]
    assert dedupe_pois(unique) == unique


def test_analyze_smc_needs_enough_candles(htf_candles, mtf_candles, settings):
    chart_data = {"htf": htf_candles, "mtf": mtf_candles, "ltf": mtf_candles[:5]}

    result = analyze_smc(chart_data, settings)

    assert result.signals == []
    assert result.drawings == []


def test_analyze_smc_extends_poi_drawings_to_last_ltf_candle(htf_candles, mtf_candles, settings):
    ltf = [make_candle(t, 11.0, 11.5, 10.5, 11.2) for t in range(3000, 6000, 100)]
    chart_data = {"htf": htf_candles, "mtf": mtf_candles, "ltf": ltf}

    result = analyze_smc(chart_data, settings)

    assert [d.kind for d in result.drawings] == ["BOS", "POI"]
    poi = result.drawings[1].data
    assert poi.start_time == 2250
    assert poi.end_time == ltf[-1]["time"]
    assert result.signals == []
