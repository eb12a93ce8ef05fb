"""JASO selection rules for motorcycles and symptom disambiguation."""

import pytest

from lubebot.catalog import Product
from lubebot.vehicle_matcher import VehicleMatch


class TestIsScooter:
    @pytest.mark.parametrize("model", ["勁戰", "JET SL", "smax 155", "Force"])
    def test_scooter_models(self, motorcycle_rules, model):
        assert motorcycle_rules.is_scooter(model) is True

    @pytest.mark.parametrize("model", ["CBR600", "Ninja 400", "R1", "MT-07", ""])
    def test_not_scooter(self, motorcycle_rules, model):
        assert motorcycle_rules.is_scooter(model) is False

    def test_none(self, motorcycle_rules):
        assert motorcycle_rules.is_scooter(None) is False

    def test_record_sub_type(self, motorcycle_rules):
        vehicle = VehicleMatch(matched=True, vehicle_type="motorcycle", vehicle_sub_type="scooter")
        assert motorcycle_rules.is_scooter(vehicle)

    def test_record_certification(self, motorcycle_rules):
        assert motorcycle_rules.is_scooter({"certifications": ["JASO MB"]})
        assert not motorcycle_rules.is_scooter({"certifications": ["JASO MA2"]})


class TestJaso:
    def test_jaso_type(self, motorcycle_rules):
        assert motorcycle_rules.get_jaso_type("勁戰") == "MB"
        assert motorcycle_rules.get_jaso_type("CBR600") == "MA2"
        assert motorcycle_rules.get_jaso_type("unknown bike") is None

    def test_rule_wording_comes_from_knowledge(self, motorcycle_rules):
        assert motorcycle_rules.jaso_certification(True) == "JASO MB"
        assert "dry clutch" in motorcycle_rules.jaso_reason(True)
        assert "Wet clutch" in motorcycle_rules.jaso_reason(False)

    def test_strict_check(self, motorcycle_rules, motorcycle_products):
        scooter_oil, manual_oil, _ = motorcycle_products
        assert motorcycle_rules.check_jaso(scooter_oil, is_scooter=True)
        assert not motorcycle_rules.check_jaso(manual_oil, is_scooter=True)
        assert motorcycle_rules.check_jaso(manual_oil, is_scooter=False)
        assert not motorcycle_rules.check_jaso(scooter_oil, is_scooter=False)

    def test_filter_keeps_motorcycle_titled_products(self, motorcycle_rules, motorcycle_products):
        kept = motorcycle_rules.filter_motorcycle_products(motorcycle_products)
        assert [product.partno for product in kept] == ["LM1505", "LM1521"]

    def test_filter_scooter_excludes_ma_only(self, motorcycle_rules, motorcycle_products):
        kept = motorcycle_rules.filter_motorcycle_products(motorcycle_products, is_scooter=True)
        assert [product.partno for product in kept] == ["LM1505"]

    def test_filter_viscosity(self, motorcycle_rules, motorcycle_products):
        assert motorcycle_rules.filter_motorcycle_products(motorcycle_products, viscosity="20W-50") == []

    def test_search_for_scooter_vehicle(self, motorcycle_rules, catalog_products, vehicle_matcher):
        vehicle = vehicle_matcher.match("勁戰 機油")
        found = motorcycle_rules.search_motorcycle_oil(catalog_products, vehicle)
        assert [product.partno for product in found] == ["LM1505"]

    def test_search_for_manual_vehicle(self, motorcycle_rules, catalog_products, vehicle_matcher):
        vehicle = vehicle_matcher.match("cbr600 機油")
        found = motorcycle_rules.search_motorcycle_oil(catalog_products, vehicle)
        assert {product.partno for product in found} == {"LM1515", "LM1521"}


class TestSyntheticRanking:
    def test_scores(self, motorcycle_rules):
        assert motorcycle_rules.get_synthetic_score("Motorbike 4T Synth Street Race 10W-40") == 3
        assert motorcycle_rules.get_synthetic_score("Motorbike 4T Street 10W-40") == 2
        assert motorcycle_rules.get_synthetic_score("Mineral 4T") == 1
        assert motorcycle_rules.get_synthetic_score("Something") == 1.5
        assert motorcycle_rules.get_synthetic_score("") == 0

    def test_sort_prefers_full_synthetic(self, motorcycle_rules, by_partno):
        products = [by_partno["LM1515"], by_partno["LM1521"]]
        ranked = motorcycle_rules.sort_motorcycle_products(products, prefer_full_synthetic=True)
        assert [product.partno for product in ranked] == ["LM1521", "LM1515"]

    def test_sort_scooter_prefers_mb(self, motorcycle_rules, by_partno):
        products = [by_partno["LM1521"], by_partno["LM1505"]]
        ranked = motorcycle_rules.sort_motorcycle_products(products, is_scooter=True)
        assert ranked[0].partno == "LM1505"


class TestSymptomMatcher:
    def test_unknown_vehicle_asks_for_type(self, symptom_matcher):
        result = symptom_matcher.match("我的車吃機油怎麼辦")
        assert result.needs_vehicle_type
        assert result.items == []
        assert result.vehicle_options["car"][0].skus == ["LM2509"]
        assert result.vehicle_options["motorcycle"][0].skus == ["LM1580"]

    def test_known_vehicle_resolves(self, symptom_matcher):
        result = symptom_matcher.match("吃機油", vehicle_type="car")
        assert not result.needs_clarification
        assert result.solution_skus == ["LM2509"]
        assert result.items[0].solutions[0].name == "Oil Loss Stop"

    def test_alias_synonym(self, symptom_matcher):
        result = symptom_matcher.match("最近燒機油很嚴重", vehicle_type="motorcycle")
        assert result.detected_symptom == "吃機油"
        assert result.solution_skus == ["LM1580"]

    def test_transmission_clarification(self, symptom_matcher):
        result = symptom_matcher.match("換檔頓挫", vehicle_type="car")
        assert result.needs_transmission_type
        assert result.transmission_options["auto"][0].skus == ["LM5135"]
        assert result.transmission_options["manual"][0].skus == ["LM2510"]

    def test_transmission_known(self, symptom_matcher):
        result = symptom_matcher.match("換檔頓挫", vehicle_type="car", transmission_type="manual")
        assert result.solution_skus == ["LM2510"]

    def test_fuel_filters_entries(self, symptom_matcher):
        result = symptom_matcher.match("積碳", vehicle_type="car", fuel_type="diesel")
        assert result.solution_skus == ["LM20793"]

    def test_universal_area_needs_no_vehicle(self, symptom_matcher):
        result = symptom_matcher.match("加速無力")
        assert not result.needs_vehicle_type
        assert result.solution_skus == ["LM7820"]

    def test_informational_only(self, symptom_matcher):
        result = symptom_matcher.match("機油燈亮了")
        assert result.informational_only
        assert result.items[0].solutions == []

    def test_no_symptom(self, symptom_matcher):
        result = symptom_matcher.match("你好")
        assert not result.matched
        assert result.detected_symptom is None

    def test_fragment_of_a_problem_is_not_a_symptom(self, symptom_matcher):
        for message in ("油", "機油"):
            result = symptom_matcher.match(message)
            assert not result.matched
            assert not result.needs_vehicle_type

    def test_deterministic(self, symptom_matcher):
        first = symptom_matcher.match("積碳", vehicle_type="car")
        second = symptom_matcher.match("積碳", vehicle_type="car")
        assert first.to_dict() == second.to_dict()


class TestAdditivePriority:
    def test_diesel_bonus(self, symptom_matcher):
        diesel = Product(partno="LM20793", title="Diesel Particulate Filter Protector")
        other = Product(partno="LM5129", title="Injection Cleaner")
        assert symptom_matcher.additive_priority_score(diesel, fuel_type="diesel") > symptom_matcher.additive_priority_score(
            other, fuel_type="diesel"
        )

    def test_track_scenario_prefers_speed(self, symptom_matcher):
        speed = Product(partno="LM7820", title="Speed Shooter")
        flush = Product(partno="LM2427", title="Engine Flush Plus")
        assert symptom_matcher.additive_priority_score(speed, usage_scenario="track") > symptom_matcher.additive_priority_score(
            flush, usage_scenario="track"
        )
