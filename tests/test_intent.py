"""Classifier output parsing, keyword upgrades, and intent resolution."""

import pytest

from lubebot.intent import (
    AnalysisVehicle,
    Authentication,
    FallbackAnalysis,
    GeneralInquiry,
    PriceInquiry,
    ProductRecommendation,
    PurchaseInquiry,
    analysis_from_dict,
    parse_analysis,
)
from lubebot.vehicle_matcher import VehicleMatch


class TestParseAnalysis:
    def test_trailing_comma_still_parses(self):
        analysis = parse_analysis('{"intent_type": "price_inquiry", "queried_sku": "LM3840",}')
        assert isinstance(analysis, PriceInquiry)
        assert analysis.queried_sku == "LM3840"

    def test_unknown_type_is_general(self):
        assert isinstance(parse_analysis('{"intent_type": "weird"}'), GeneralInquiry)

    def test_prose_is_fallback(self):
        analysis = parse_analysis("Sorry, I can only answer questions about lubricants.")
        assert isinstance(analysis, FallbackAnalysis)
        assert analysis.reason == "unparseable"
        assert analysis.raw_text.startswith("Sorry")

    def test_empty_is_fallback(self):
        analysis = parse_analysis("")
        assert isinstance(analysis, FallbackAnalysis)
        assert analysis.reason == "empty"

    def test_camel_case_keys(self):
        analysis = analysis_from_dict(
            {
                "intentType": "product_recommendation",
                "productCategory": "oil",
                "searchKeywords": "Top Tec",
                "vehicles": [{"vehicleName": "Golf", "brand": "Volkswagen", "vehicleType": "car"}],
                "certificationSearch": {"requestedCert": "VW 504 00"},
            }
        )
        assert isinstance(analysis, ProductRecommendation)
        assert analysis.search_keywords == ["Top Tec"]
        assert analysis.vehicles[0].name == "Golf"
        assert analysis.certification_search == {"requested_cert": "VW 504 00", "viscosity": None}

    def test_recommendation_flag_without_type(self):
        assert isinstance(analysis_from_dict({"needsProductRecommendation": True}), ProductRecommendation)

    def test_kind_tags(self):
        assert ProductRecommendation.kind == "product_recommendation"
        assert FallbackAnalysis().kind == "fallback"


class TestEnhanceWithRules:
    def test_fallback_authentication(self, intent_resolver):
        enhanced = intent_resolver.enhance_with_rules(FallbackAnalysis(), "這是正品嗎")
        assert isinstance(enhanced, Authentication)

    def test_rule_order(self, intent_resolver):
        enhanced = intent_resolver.enhance_with_rules(GeneralInquiry(), "正品多少錢")
        assert isinstance(enhanced, Authentication)

    def test_general_price(self, intent_resolver):
        assert isinstance(intent_resolver.enhance_with_rules(GeneralInquiry(), "這瓶多少錢"), PriceInquiry)

    def test_purchase(self, intent_resolver):
        assert isinstance(intent_resolver.enhance_with_rules(GeneralInquiry(), "哪裡買得到"), PurchaseInquiry)

    def test_fallback_with_category_becomes_recommendation(self, intent_resolver):
        enhanced = intent_resolver.enhance_with_rules(FallbackAnalysis(), "機油推薦")
        assert isinstance(enhanced, ProductRecommendation)
        assert enhanced.product_category == "oil"

    def test_general_only_gains_category(self, intent_resolver):
        enhanced = intent_resolver.enhance_with_rules(GeneralInquiry(), "變速箱有問題")
        assert isinstance(enhanced, GeneralInquiry)
        assert enhanced.product_category == "transmission"

    def test_no_rule_returns_same_object(self, intent_resolver):
        analysis = GeneralInquiry()
        assert intent_resolver.enhance_with_rules(analysis, "你好") is analysis

    def test_classifier_decision_stands(self, intent_resolver):
        analysis = ProductRecommendation(product_category="oil")
        assert intent_resolver.enhance_with_rules(analysis, "這是正品嗎") is analysis


class TestDetect:
    def test_category_order(self, intent_resolver):
        assert intent_resolver.detect_category("吃機油怎麼辦") == "additive"
        assert intent_resolver.detect_category("機油燈亮了") == "oil"
        assert intent_resolver.detect_category("你好") is None

    def test_viscosity(self, intent_resolver):
        assert intent_resolver.detect_viscosity("推薦 5w30 機油") == "5W-30"
        assert intent_resolver.detect_viscosity("0W-20") == "0W-20"
        assert intent_resolver.detect_viscosity("沒有黏度") is None


class TestResolve:
    def test_fallback_keeps_alias_vehicle_spec(self, intent_resolver, vehicle_matcher):
        message = "Toyota Camry 機油"
        intent = intent_resolver.resolve(FallbackAnalysis(), message, vehicle_matcher.match(message))
        assert intent.kind == "general_inquiry"
        assert intent.product_category == "oil"
        assert intent.viscosity == "0W-20"
        assert intent.primary_vehicle.certifications == ["API SP", "ILSAC GF-6A"]
        assert "vehicle" not in intent.needs_more_info

    def test_alias_match_beats_classifier_vehicle(self, intent_resolver, vehicle_matcher):
        message = "Toyota Camry 機油"
        analysis = ProductRecommendation(vehicles=[AnalysisVehicle(brand="Honda", model="Civic")])
        intent = intent_resolver.resolve(analysis, message, vehicle_matcher.match(message))
        assert intent.primary_vehicle.model == "Camry"
        assert intent.primary_vehicle.match_source == "alias"

    def test_classifier_vehicle_filled_from_specs(self, intent_resolver):
        analysis = ProductRecommendation(
            product_category="機油",
            vehicles=[AnalysisVehicle(name="2020 BMW 3 Series", brand="BMW", model="3 Series")],
        )
        intent = intent_resolver.resolve(analysis, "我的車要換機油", VehicleMatch())
        vehicle = intent.primary_vehicle
        assert intent.product_category == "oil"
        assert vehicle.match_source == "analysis_spec"
        assert vehicle.certifications == ["BMW LL-17FE"]
        assert vehicle.recommended_skus == ["LM20844"]
        assert intent.viscosity == "0W-20"

    def test_value_aliases(self, intent_resolver):
        analysis = ProductRecommendation(
            usage_scenario="跑山",
            vehicles=[AnalysisVehicle(transmission_type="手排")],
        )
        intent = intent_resolver.resolve(analysis, "推薦添加劑", VehicleMatch())
        assert intent.usage_scenario == "mountain"
        assert intent.transmission_type == "manual"
        assert intent.product_category == "additive"

    def test_certification_from_message(self, intent_resolver):
        intent = intent_resolver.resolve(ProductRecommendation(), "有 api sp 的機油嗎", VehicleMatch())
        assert intent.certifications == ["API SP"]
        assert intent.certification_search == {"requested_cert": "API SP", "viscosity": None}
        assert "vehicle" not in intent.needs_more_info

    def test_jaso_is_not_a_search_cert(self, intent_resolver):
        intent = intent_resolver.resolve(ProductRecommendation(), "JASO MA2 機油", VehicleMatch())
        assert intent.certifications == []
        assert intent.certification_search is None

    def test_requested_cert_from_classifier(self, intent_resolver):
        analysis = ProductRecommendation(
            product_category="oil",
            certification_search={"requested_cert": "VW 504 00", "viscosity": "5W-30"},
        )
        intent = intent_resolver.resolve(analysis, "504 認證機油", VehicleMatch())
        assert intent.certifications == ["VW 504 00"]

    def test_queried_sku_becomes_keyword(self, intent_resolver):
        intent = intent_resolver.resolve(PriceInquiry(queried_sku="LM3840"), "這個多少", VehicleMatch())
        assert intent.kind == "price_inquiry"
        assert "LM3840" in intent.search_keywords

    def test_missing_category(self, intent_resolver):
        intent = intent_resolver.resolve(ProductRecommendation(), "推薦一下", VehicleMatch())
        assert intent.needs_more_info == ["product_category"]

    def test_missing_vehicle_for_oil(self, intent_resolver):
        intent = intent_resolver.resolve(ProductRecommendation(), "推薦機油", VehicleMatch())
        assert intent.needs_more_info == ["vehicle"]

    def test_viscosity_satisfies_vehicle_requirement(self, intent_resolver):
        intent = intent_resolver.resolve(ProductRecommendation(), "推薦 5W-30 機油", VehicleMatch())
        assert intent.viscosity == "5W-30"
        assert intent.needs_more_info == []

    def test_large_pack(self, intent_resolver):
        intent = intent_resolver.resolve(ProductRecommendation(), "5W-30 機油 4L", VehicleMatch())
        assert intent.prefer_large_pack

    def test_unsupported_variant(self, intent_resolver):
        with pytest.raises(TypeError):
            intent_resolver.resolve(object(), "hi", VehicleMatch())

    def test_to_dict(self, intent_resolver):
        intent = intent_resolver.resolve(GeneralInquiry(), "你好", VehicleMatch())
        data = intent.to_dict()
        assert data["kind"] == "general_inquiry"
        assert data["vehicles"] == []
        assert not intent.wants_products
