"""Removal of unverified SKUs from generated replies."""

from lubebot.catalog import Product

WARNING = "Note: some products mentioned earlier could not be confirmed in our catalog and have been removed."
FALLBACK = "Sorry, I could not find a product that matches your needs. Please contact customer service."


def products(*partnos):
    return [Product(partno=partno) for partno in partnos]


class TestExtract:
    def test_order_and_case(self, validator):
        assert validator.extract_skus("Try lm3840 or LM20788, then LM3840 again") == ["LM3840", "LM20788"]

    def test_none(self, validator):
        assert validator.extract_skus("") == []


class TestValidate:
    def test_no_products_skips(self, validator):
        result = validator.validate("Use LM9999", [])
        assert result.skipped
        assert result.validated_text == "Use LM9999"
        assert not result.changed

    def test_all_valid_unchanged(self, validator):
        text = "1. LM3840 Top Tec 4200\n2. LM20788 Top Tec 6200"
        result = validator.validate(text, products("LM3840", "LM20788"))
        assert result.validated_text == text
        assert result.valid_skus == ["LM3840", "LM20788"]
        assert result.invalid_skus == []

    def test_text_without_skus_unchanged(self, validator):
        result = validator.validate("Please tell me your car model.", products("LM3840"))
        assert result.validated_text == "Please tell me your car model."

    def test_all_invalid_uses_fallback(self, validator):
        result = validator.validate("I recommend LM9999 and LM8888.", products("LM3840"))
        assert result.validated_text == FALLBACK
        assert result.invalid_skus == ["LM9999", "LM8888"]

    def test_numbered_item_removed_with_details(self, validator):
        text = (
            "Recommended oils:\n"
            "1. LM3840 Top Tec 4200 5W-30\n"
            "   VW 504 00 approved\n"
            "2. LM9999 Super Oil\n"
            "   Made up details\n"
            "   More made up details\n"
            "3. LM20788 Top Tec 6200 0W-20\n"
            "\n"
            "Ask us anything."
        )
        result = validator.validate(text, products("LM3840", "LM20788"))
        assert result.invalid_skus == ["LM9999"]
        assert result.changed
        assert "LM9999" not in result.validated_text
        assert "Made up details" not in result.validated_text
        assert "VW 504 00 approved" in result.validated_text
        assert "3. LM20788" in result.validated_text
        assert result.validated_text.startswith(WARNING)

    def test_plain_line_removed(self, validator):
        text = "LM3840 fits your Golf.\nLM9999 is also great.\nThanks!"
        result = validator.validate(text, products("LM3840"))
        assert result.validated_text == WARNING + "\n\nLM3840 fits your Golf.\nThanks!"

    def test_longer_sku_is_not_treated_as_prefix_match(self, validator):
        text = "LM2078 is gone.\nLM20788 stays."
        result = validator.validate(text, products("LM20788"))
        assert result.invalid_skus == ["LM2078"]
        assert "LM20788 stays." in result.validated_text
        assert "LM2078 is gone." not in result.validated_text

    def test_no_invalid_sku_survives(self, validator):
        text = "- LM1111 first\n- LM3840 second\n- LM2222 third, or LM1111 again"
        result = validator.validate(text, products("LM3840"))
        for sku in result.invalid_skus:
            assert sku not in result.validated_text
        assert "LM3840 second" in result.validated_text

    def test_overlong_token_is_removed(self, validator):
        result = validator.validate("1. LM3840 Top Tec 4200\n2. LM208789 Mystery oil", products("LM3840"))
        assert result.invalid_skus == ["LM20878"]
        assert "LM208789" not in result.validated_text
        assert validator.extract_skus(result.validated_text) == ["LM3840"]
