import unittest

from cleanops import linen

INVENTORY = [
    {"id": "sheet", "name": "Lenzuolo matrimoniale", "key": "double_sheets", "category": "biancheria_letto", "sell_price": 6},
    {"id": "single", "name": "Lenzuolo singolo", "category": "biancheria_letto", "sell_price": 5},
    {"id": "pillow", "name": "Federa", "category": "biancheria_letto", "sell_price": 2},
    {"id": "towel", "name": "Telo doccia", "category": "biancheria_bagno", "sell_price": 4},
    {"id": "shampoo", "name": "Shampoo", "category": "kit_cortesia", "sell_price": 1},
    {"id": "breakfast", "name": "Colazione", "category": "servizi_extra", "sell_price": 10},
]


class AutoBedTests(unittest.TestCase):
    def test_five_guests_in_two_rooms(self):
        beds = linen.generate_auto_beds(5, 2)
        self.assertEqual([b["type"] for b in beds], ["matrimoniale", "matrimoniale", "singolo"])
        self.assertEqual([b["id"] for b in beds], ["b1", "b2", "b3"])
        self.assertEqual(beds[2]["location"], "Cameretta")

    def test_overflow_goes_to_sofa_then_bunks(self):
        beds = linen.generate_auto_beds(6, 1)
        self.assertEqual([b["type"] for b in beds], ["matrimoniale", "divano_letto", "castello"])
        self.assertEqual(sum(linen.bed_capacity(b) for b in beds), 6)

    def test_single_guest(self):
        beds = linen.generate_auto_beds(1, 1)
        self.assertEqual(len(beds), 1)
        self.assertEqual(beds[0]["location"], "Camera 1")


class RequirementTests(unittest.TestCase):
    def test_linen_for_beds_sums_rules(self):
        req = linen.linen_for_beds(
            [{"type": "matrimoniale"}, {"type": "singolo"}, {"type": "castello"}]
        )
        self.assertEqual(req, linen.LinenRequirement(double_sheets=3, single_sheets=9, pillowcases=5))

    def test_unknown_bed_types_fall_back_by_name(self):
        self.assertEqual(linen.linen_for_bed_type("Queen double").double_sheets, 3)
        self.assertEqual(linen.linen_for_bed_type("bunk bed").single_sheets, 6)
        self.assertEqual(linen.linen_for_bed_type(None).single_sheets, 3)

    def test_bath_linen(self):
        self.assertEqual(
            linen.bath_linen(3, 2),
            linen.BathRequirement(shower_towels=3, face_towels=3, bidet_towels=3, bath_mats=2),
        )


class KeywordMatchingTests(unittest.TestCase):
    def test_key_wins_over_keywords(self):
        items = [{"id": "a", "name": "Lenzuolo doppio"}, {"id": "b", "name": "X", "key": "double_sheets"}]
        self.assertEqual(linen.find_item_by_keywords(items, "double_sheets")["id"], "b")

    def test_short_keywords_match_whole_words_only(self):
        items = [{"id": "sheet", "name": "Lenzuolo matrimoniale"}]
        self.assertIsNone(linen.find_item_by_keywords(items, "bath_mats"))
        items.append({"id": "mat", "name": "Bath mat"})
        self.assertEqual(linen.find_item_by_keywords(items, "bath_mats")["id"], "mat")

    def test_unknown_kind(self):
        self.assertIsNone(linen.find_item_by_keywords(INVENTORY, "blankets"))


class GuestConfigTests(unittest.TestCase):
    def setUp(self):
        self.beds = [
            {"id": "b1", "type": "matrimoniale", "capacity": 2},
            {"id": "b2", "type": "singolo", "capacity": 1},
        ]

    def test_generate_config_selects_enough_beds(self):
        config = linen.generate_config_for_guests(3, self.beds, 1, INVENTORY)
        self.assertEqual(config["beds"], ["b1", "b2"])
        self.assertEqual(config["bed_linen"]["b1"], {"sheet": 3, "pillow": 2})
        self.assertEqual(config["bed_linen"]["b2"], {"single": 3, "pillow": 1})
        self.assertEqual(config["bath"], {"towel": 3})
        self.assertEqual(config["kit"], {"shampoo": 3})
        self.assertEqual(config["extras"], {"breakfast": False})

    def test_validate_all_configs(self):
        configs = linen.generate_all_guest_configs(3, self.beds, 1, INVENTORY)
        valid, report = linen.validate_all_configs(configs, self.beds, 3)
        self.assertTrue(valid)
        self.assertEqual(set(report), {"1", "2", "3"})

        del configs["3"]
        valid, report = linen.validate_all_configs(configs, self.beds, 3)
        self.assertFalse(valid)
        self.assertEqual(report["3"].missing, 3)

    def test_validate_reports_missing_capacity(self):
        result = linen.validate_guest_config({"beds": ["b2"], "bed_linen": {}, "bath": {}}, self.beds, 2)
        self.assertFalse(result.valid)
        self.assertEqual(result.missing, 1)
        self.assertEqual(len(result.warnings), 2)

    def test_normalize_short_and_legacy_keys(self):
        short = linen.normalize_config({"beds": ["b1"], "bl": {"b1": {"sheet": 1}}, "ba": {"towel": 2}})
        self.assertEqual(short["bed_linen"], {"b1": {"sheet": 1}})
        self.assertEqual(short["bath"], {"towel": 2})
        legacy = linen.normalize_config({"selectedBeds": ["b2"], "bedLinen": {}, "bathItems": {"towel": 1}})
        self.assertEqual(legacy["beds"], ["b2"])
        self.assertEqual(legacy["bath"], {"towel": 1})

    def test_migrate_shared_bucket_to_per_bed(self):
        migrated = linen.migrate_old_config(
            {"beds": ["b1", "b2"], "bed_linen": {"all": {"sheet": 4}}}, self.beds, INVENTORY
        )
        self.assertEqual(set(migrated["bed_linen"]), {"b1", "b2"})
        self.assertEqual(migrated["bed_linen"]["b1"]["sheet"], 3)

    def test_selected_items_aggregate_across_beds(self):
        config = {
            "beds": ["b1", "b2"],
            "bed_linen": {"b1": {"pillow": 2}, "b2": {"pillow": 1}},
            "bath": {"towel": 2},
            "kit": {"shampoo": 0},
            "extras": {"breakfast": True},
        }
        lines = {line["id"]: line for line in linen.config_to_selected_items(config, INVENTORY)}
        self.assertEqual(lines["pillow"]["quantity"], 3)
        self.assertEqual(lines["breakfast"]["quantity"], 1)
        self.assertNotIn("shampoo", lines)
        self.assertEqual(linen.config_price(config, INVENTORY), 24.0)


class DotationTests(unittest.TestCase):
    def test_auto_dotation_prices_generated_beds(self):
        result = linen.calculate_dotation(
            {"guests_count": 2, "price": 50},
            {"bedrooms": 1, "bathrooms": 1},
            INVENTORY,
        )
        self.assertEqual(result.source, "auto")
        self.assertEqual(result.dotation_price, 30.0)
        self.assertEqual(result.total_price, 80.0)
        self.assertEqual([line.name for line in result.bath_items], ["Telo doccia"])

    def test_saved_legacy_ids_use_default_prices(self):
        result = linen.calculate_dotation(
            {
                "guests_count": 2,
                "custom_linen_config": {
                    "beds": ["b1"],
                    "bed_linen": {"b1": {"doubleSheets": 2}},
                    "bath": {"towelsLarge": 2},
                },
            },
            {"cleaning_price": 40},
            [],
        )
        self.assertEqual(result.source, "saved")
        self.assertEqual(result.bed_items[0].name, "Lenzuola Matrimoniali")
        self.assertEqual(result.dotation_price, 20.0)
        self.assertEqual(result.total_price, 60.0)


if __name__ == "__main__":
    unittest.main()
