import math

from lexsync.services.shipment_mapper import (
    REFERENCE_FIELDS,
    SHIPMENT_FIELDS,
    map_shipment,
    normalize_date,
    round_decimal2,
    round_integer,
)


def test_both_date_shapes_normalize_to_same_day():
    assert normalize_date("05-03-2024") == "2024-03-05"
    assert normalize_date("2024-03-05T10:15:00Z") == "2024-03-05"
    assert normalize_date("2024-03-05T10:15:00.000Z") == "2024-03-05"
    assert normalize_date("2024-03-05") == "2024-03-05"
    assert normalize_date("5-3-2024") == "2024-03-05"


def test_slash_separated_dates_are_not_guessed():
    # 3/5/2024 could be 3 May or 5 March
    assert normalize_date("3/5/2024") == ""
    assert normalize_date("05/03/2024") == ""


def test_aware_timestamp_converted_to_utc_before_taking_date():
    assert normalize_date("2024-03-05T02:00:00+05:30") == "2024-03-04"


def test_bad_dates_become_empty_string():
    assert normalize_date("31-02-2024") == ""
    assert normalize_date("not a date") == ""
    assert normalize_date(None) == ""
    assert normalize_date("   ") == ""


def test_description_and_hs_code_truncated():
    mapped = map_shipment({"AWB": "AWB1", "Description": "x" * 300, "HS_CODE": "12345678901234"})
    assert len(mapped["Description"]) == 255
    assert mapped["HS_Code"] == "123456789"


def test_short_values_untouched():
    mapped = map_shipment({"Description": "Books", "HS_CODE": "4901"})
    assert mapped["Description"] == "Books"
    assert mapped["HS_Code"] == "4901"


def test_numeric_rounding_and_nan_guard():
    assert round_integer("12.5") == 13
    assert round_integer(12.49) == 12
    assert round_integer("1,250.6") == 1251
    assert round_integer("abc") is None
    assert round_integer("NaN") is None
    assert round_integer(float("nan")) is None
    assert round_decimal2("1.005") == 1.01
    assert round_decimal2(2.344) == 2.34
    assert round_decimal2("") is None


def test_every_declared_field_present_with_fallbacks():
    mapped = map_shipment({"AWB": "AWB9"})
    for column in SHIPMENT_FIELDS:
        assert column.target in mapped
    for target in REFERENCE_FIELDS:
        assert target in mapped
        assert mapped[target] is None
    assert mapped["Name"] == "AWB9"
    assert mapped["Currency"] == ""
    assert mapped["Package_Value"] is None
    assert mapped["Billed_Weight"] is None
    assert mapped["Booked_Date"] == ""


def test_reference_fields_embed_name_and_id():
    deal = {"id": "D1", "Deal_Name": "Acme Deal"}
    account = {"id": "A1", "Account_Name": "Acme Ltd"}
    mapped = map_shipment({"AWB": "AWB1"}, deal=deal, account=account)
    assert mapped["Seller_Name"] == {"name": "Acme Deal", "id": "D1"}
    assert mapped["Prospect_Name"] == {"name": "Acme Deal", "id": "D1"}
    assert mapped["Cust_ID_s"] == {"name": "Acme Ltd", "id": "A1"}


def test_field_coercion_of_a_realistic_record():
    record = {
        "Name": "LX100200300",
        "Customer_ID": 4412,
        "Package_Value": "1499.5",
        "Billed_Weight": "0.755",
        "Booked_Date": "14-06-2024",
        "Delivered_Date": "2024-06-20T18:30:00Z",
        "Destination_Country": "US",
    }
    mapped = map_shipment(record)
    assert mapped["Name"] == "LX100200300"
    assert mapped["Customer_ID"] == "4412"
    assert mapped["Package_Value"] == 1500
    assert math.isclose(mapped["Billed_Weight"], 0.76)
    assert mapped["Booked_Date"] == "2024-06-14"
    assert mapped["Delivered_Date"] == "2024-06-20"
    assert mapped["Destination_Country"] == "US"


def test_mapping_is_deterministic():
    record = {"AWB": "AWB1", "Package_Value": "10.5", "Booked_Date": "01-01-2024"}
    assert map_shipment(record) == map_shipment(dict(record))
