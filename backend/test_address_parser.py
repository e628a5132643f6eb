"""Address parser: field extraction and re-prompt on missing fields."""
import pytest

from pharmabot.agent.address_parser import extract_address, parse_delivery_address
from pharmabot.core.exceptions import ParseError


def test_standalone_pincode_line():
    address = parse_delivery_address("John Doe\n123 Main St\nNew Delhi\n110001\nNear Mall")

    assert address.name == "John Doe"
    assert address.address_lines == ["123 Main St"]
    assert address.city == "New Delhi"
    assert address.pincode == "110001"
    assert address.landmark == "Near Mall"


def test_blank_lines_and_padding_are_ignored():
    address = parse_delivery_address("  John Doe \n\n 123 Main St\n  New Delhi\n\n110001  ")

    assert address.name == "John Doe"
    assert address.address_lines == ["123 Main St"]
    assert address.city == "New Delhi"
    assert address.landmark is None


def test_pincode_embedded_with_city():
    address = parse_delivery_address("Ravi Kumar\nFlat 4, MG Road\nBangalore 560001")

    assert address.address_lines == ["Flat 4, MG Road"]
    assert address.city == "Bangalore"
    assert address.pincode == "560001"


def test_embedded_pincode_splits_street_segments():
    address = parse_delivery_address("Asha\nBlock C\n12 Park St, Kolkata - 700016\nNear Lake")

    assert address.address_lines == ["Block C", "12 Park St"]
    assert address.city == "Kolkata"
    assert address.pincode == "700016"
    assert address.landmark == "Near Lake"


def test_labelled_pincode_line_counts_as_standalone():
    address = parse_delivery_address("Meena\n7 Lake View\nChennai\nPincode: 600001")

    assert address.city == "Chennai"
    assert address.pincode == "600001"


def test_numbering_is_stripped_from_name():
    address = parse_delivery_address("1. John Doe\n2. 123 Main St\nNew Delhi\n110001")

    assert address.name == "John Doe"


def test_numbered_prompt_format_is_parsed():
    address = parse_delivery_address("1. John Doe\n2. 123 Main St\n3. New Delhi\n4. 110001\n5. Near Mall")

    assert address.name == "John Doe"
    assert address.address_lines == ["123 Main St"]
    assert address.city == "New Delhi"
    assert address.pincode == "110001"
    assert address.landmark == "Near Mall"


def test_house_numbers_survive_when_list_is_not_numbered():
    address = parse_delivery_address("John Doe\n12. Park Street\nKolkata\n700016")

    assert address.address_lines == ["12. Park Street"]


def test_missing_pincode_fails():
    with pytest.raises(ParseError) as exc:
        parse_delivery_address("John Doe\n123 Main St\nNew Delhi")

    assert exc.value.missing == ["pincode"]


def test_missing_pincode_falls_back_to_last_line_as_city():
    address = extract_address("John Doe\n123 Main St\nNew Delhi")

    assert address.city == "New Delhi"
    assert address.address_lines == ["123 Main St"]
    assert address.pincode == ""


def test_too_few_lines_fails():
    with pytest.raises(ParseError) as exc:
        parse_delivery_address("John Doe\nDelhi 110001")

    assert "address" in exc.value.missing


def test_empty_input_reports_every_field():
    with pytest.raises(ParseError) as exc:
        parse_delivery_address("   \n  ")

    assert exc.value.missing == ["name", "address", "city", "pincode"]


def test_pincode_right_after_name_leaves_no_city():
    with pytest.raises(ParseError) as exc:
        parse_delivery_address("John Doe\n110001\nNear Mall")

    assert exc.value.missing == ["address", "city"]


def test_long_digit_runs_are_not_pincodes():
    with pytest.raises(ParseError) as exc:
        parse_delivery_address("John Doe\nPhone 9876543210\nMumbai")

    assert "pincode" in exc.value.missing


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
