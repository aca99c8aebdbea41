from esummit.model.pricing import (
    MERCH_BUNDLES,
    TICKET_PRICES,
    bundle_for_quantity,
    calculate_bundle_price,
    calculate_ticket_price,
    get_accommodation_price,
)


def test_external_small_group_tier():
    calc = calculate_ticket_price(5, "external")
    assert calc.price_per_head == 325
    assert calc.total_amount == 1625
    assert calc.label == "Group Pass (Small)"
    assert calc.is_external is True


def test_external_tier_boundaries():
    assert calculate_ticket_price(1, "external").price_per_head == 349
    assert calculate_ticket_price(6, "external").price_per_head == 325
    assert calculate_ticket_price(7, "external").price_per_head == 300
    assert calculate_ticket_price(250, "external").label == "Group Pass (Large)"


def test_internal_tiers():
    assert calculate_ticket_price(1, "internal").price_per_head == 199
    assert calculate_ticket_price(3, "internal").price_per_head == 180
    assert calculate_ticket_price(4, "internal").price_per_head == 170
    assert calculate_ticket_price(9, "internal").price_per_head == 170
    big = calculate_ticket_price(10, "internal")
    assert big.price_per_head == 149
    assert big.total_amount == 1490
    assert big.is_external is False


def test_any_other_role_prices_as_external():
    for role in ("admin", "super_admin", "", "whatever"):
        assert calculate_ticket_price(2, role).is_external is True


def test_no_matching_tier_falls_back_to_last():
    calc = calculate_ticket_price(0, "external")
    assert calc.label == "Group Pass (Large)"
    assert calc.total_amount == 0


def test_fixed_passes():
    assert TICKET_PRICES["solo"].amount == 200
    assert TICKET_PRICES["duo"].pax == 2
    assert TICKET_PRICES["quad"].amount == 680
    assert TICKET_PRICES["bumper"].pax == 10


def test_accommodation_prices():
    assert get_accommodation_price(1) == 399
    assert get_accommodation_price(2) == 699
    assert get_accommodation_price(3) == 999
    assert get_accommodation_price(0) == 0
    assert get_accommodation_price(4) == 0


def test_merch_bundles_use_early_bird_price():
    assert calculate_bundle_price("duo") == 679
    assert calculate_bundle_price("quad") == MERCH_BUNDLES["quad"].early_bird_price
    assert bundle_for_quantity(3) == "triple"
    assert bundle_for_quantity(5) is None
