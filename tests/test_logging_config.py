from leadlink.logging_config import mask_phone, mask_phone_fields


def test_mask_phone_keeps_last_four_digits():
    assert mask_phone("+375291234567") == "*********4567"
    assert mask_phone("4567") == "4567"
    assert mask_phone(None) is None


def test_phone_fields_are_masked_in_log_records():
    event = {"event": "smart_link_started", "lead_id": "abc", "lead_phone": "+375291234567"}

    masked = mask_phone_fields(None, "info", event)

    assert masked["lead_phone"] == "*********4567"
    assert masked["lead_id"] == "abc"
