from kilofly.services.content_filter import (
    EMAIL_MASK,
    PHONE_MASK,
    contains_sensitive_content,
    mask_phone_number,
    mask_sensitive_content,
    truncate_phone_for_log,
)


def test_masks_local_phone_number():
    out = mask_sensitive_content("Appelle moi au 06 12 34 56 78 ce soir")
    assert PHONE_MASK in out
    assert "12 34" not in out


def test_masks_international_phone_number():
    out = mask_sensitive_content("Mon numero: +221 77 123 45 67")
    assert PHONE_MASK in out
    assert "123 45" not in out


def test_masks_email():
    out = mask_sensitive_content("Ecris a moussa.diop@gmail.com")
    assert EMAIL_MASK in out
    assert "moussa.diop@gmail.com" not in out


def test_masks_messaging_handles():
    out = mask_sensitive_content("Contacte moi sur telegram: @kilo_user")
    assert "kilo_user" not in out
    assert "***" in out


def test_plain_text_is_untouched():
    text = "Bonjour, le colis fait 5 kg et part mardi."
    assert mask_sensitive_content(text) == text
    assert contains_sensitive_content(text) is False
    assert contains_sensitive_content("appelle le 0612345678") is True


def test_mask_phone_number():
    assert mask_phone_number("+33612345678") == "+336 ****** 78"
    assert mask_phone_number("+33 6 12 34 56 78") == "+336 ****** 78"
    assert mask_phone_number("123456") == "** ** **"
    assert mask_phone_number(None) == ""


def test_truncate_phone_for_log():
    assert truncate_phone_for_log("+221771234567") == "+22177***"
    assert truncate_phone_for_log(None) == "***"


def test_digits_glued_to_accented_word_are_masked():
    out = mask_sensitive_content("numéro appelé0612345678 merci")
    assert "0612345678" not in out
    assert PHONE_MASK in out


def test_non_ascii_digits_are_not_phone_numbers():
    text = "réf ٠٦١٢٣٤٥٦٧٨"
    assert mask_sensitive_content(text) == text
