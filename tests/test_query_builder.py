"""Catalog query synthesis."""

from lubebot.intent import ResolvedIntent
from lubebot.vehicle_matcher import VehicleMatch


def triples(queries):
    return [(query.field, query.value, query.method) for query in queries]


class TestCategorySort:
    def test_split_by_vehicle(self, query_builder):
        assert query_builder.category_sort("oil", True) == "【摩托車】機油"
        assert query_builder.category_sort("oil", False) == "【汽車】機油"
        assert query_builder.category_sort("additive", False) == "【汽車】添加劑"

    def test_single_value(self, query_builder):
        assert query_builder.category_sort("transmission", True) == "變速箱油"

    def test_unrouted(self, query_builder):
        assert query_builder.category_sort(None, False) is None
        assert query_builder.category_sort("spaceship", False) is None


class TestKeywords:
    def test_sku_normalization_and_year_skip(self, query_builder):
        skus, free_text = query_builder.split_keywords(["lm3840", "LM-8977", "2020", "20844", "Top Tec"])
        assert skus == ["LM3840", "LM8977", "LM20844"]
        assert free_text == ["Top Tec"]

    def test_four_digit_non_year_is_sku(self, query_builder):
        assert query_builder.split_keywords(["3840"]) == (["LM3840"], [])

    def test_message_skus(self, query_builder):
        assert query_builder.extract_message_skus("LM 3840 跟 lm20788 哪個好") == ["LM3840", "LM20788"]
        assert query_builder.extract_message_skus(None) == []

    def test_oil_only_keywords_dropped_for_other_categories(self, query_builder):
        assert query_builder.filter_keywords(["機油", "Engine Flush", "Top Tec"], "additive") == ["Engine Flush"]
        assert query_builder.filter_keywords(["機油", "Top Tec"], "oil") == ["機油", "Top Tec"]


class TestBuild:
    def test_scooter_oil_routing(self, query_builder, vehicle_matcher):
        intent = ResolvedIntent(
            kind="product_recommendation",
            product_category="oil",
            vehicles=[vehicle_matcher.match("勁戰 機油")],
        )
        built = triples(query_builder.build(intent))
        assert ("sort", "【摩托車】機油", "contains") in built
        assert ("title", "Motorbike", "contains") in built
        assert ("title", "Scooter", "contains") in built
        assert ("cert", "JASO MB", "contains") in built
        assert ("partno", "LM1505", "eq") in built

    def test_manual_bike_has_no_scooter_filter(self, query_builder, vehicle_matcher):
        intent = ResolvedIntent(
            kind="product_recommendation",
            product_category="oil",
            vehicles=[vehicle_matcher.match("cbr600 機油")],
        )
        built = triples(query_builder.build(intent))
        assert ("title", "Motorbike", "contains") in built
        assert ("title", "Scooter", "contains") not in built

    def test_car_spec_queries(self, query_builder, vehicle_matcher):
        intent = ResolvedIntent(
            kind="product_recommendation",
            product_category="oil",
            vehicles=[vehicle_matcher.match("Toyota Camry 機油")],
        )
        built = triples(query_builder.build(intent))
        assert ("sort", "【汽車】機油", "contains") in built
        assert ("cert", "API SP", "contains") in built
        assert ("cert", "APISP", "contains") in built
        assert ("word2", "0W-20", "contains") in built
        assert ("word2", "0W20", "contains") in built
        assert ("partno", "LM20788", "eq") in built

    def test_sku_query_is_exact_and_unique(self, query_builder):
        intent = ResolvedIntent(
            kind="price_inquiry",
            message="LM 3840 多少錢",
            search_keywords=["LM3840", "lm3840", "3840"],
        )
        queries = [query for query in query_builder.build(intent) if query.field == "partno"]
        assert len(queries) == 1
        assert queries[0].value == "LM3840"
        assert queries[0].method == "eq"
        assert queries[0].limit == 5

    def test_no_duplicate_keys(self, query_builder, vehicle_matcher):
        intent = ResolvedIntent(
            kind="product_recommendation",
            product_category="oil",
            certifications=["API SP"],
            viscosity="0W-20",
            vehicles=[vehicle_matcher.match("camry")],
            search_keywords=["Top Tec", "top tec"],
        )
        queries = query_builder.build(intent)
        keys = [query.key for query in queries]
        assert len(keys) == len(set(keys))

    def test_bare_year_produces_nothing(self, query_builder):
        intent = ResolvedIntent(kind="general_inquiry", search_keywords=["2020"])
        assert query_builder.build(intent) == []

    def test_non_oil_category_ignores_vehicle_oil_spec(self, query_builder, vehicle_matcher):
        intent = ResolvedIntent(
            kind="product_recommendation",
            product_category="additive",
            vehicles=[vehicle_matcher.match("Toyota Camry")],
            search_keywords=["機油", "Engine Flush"],
        )
        built = triples(query_builder.build(intent))
        assert ("sort", "【汽車】添加劑", "contains") in built
        assert ("title", "Engine Flush", "contains") in built
        assert all(value not in ("API SP", "0W-20", "機油") for _, value, _ in built)

    def test_default_vehicle_when_none_matched(self, query_builder):
        intent = ResolvedIntent(kind="product_recommendation", product_category="brake", vehicles=[])
        assert triples(query_builder.build(intent)) == [("sort", "煞車系統", "contains")]

    def test_motorcycle_additive_sort(self, query_builder):
        bike = VehicleMatch(matched=True, vehicle_type="motorcycle")
        intent = ResolvedIntent(kind="product_recommendation", product_category="additive", vehicles=[bike])
        assert ("sort", "【摩托車】添加劑", "contains") in triples(query_builder.build(intent))
