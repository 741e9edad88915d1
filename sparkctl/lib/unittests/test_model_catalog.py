import unittest

from sparkctl.lib import model_catalog
from sparkctl.lib.model_catalog import CATALOG, ModelProfile
from sparkctl.lib.utils_lib import ConfigurationError


class TestModelCatalog(unittest.TestCase):
    def test_catalog_size_and_unique_short_names(self):
        self.assertEqual(len(CATALOG), 14)
        short_names = [profile.short_name for profile in CATALOG]
        self.assertEqual(len(short_names), len(set(short_names)))

    def test_get_model_by_number(self):
        self.assertEqual(model_catalog.get_model_by_number("1").model_id, "openai/gpt-oss-120b")
        self.assertEqual(model_catalog.get_model_by_number(14).short_name, "DeepSeek-V2-Lite")

    def test_get_model_by_number_out_of_range(self):
        for bad in (0, 15, "abc", None):
            with self.assertRaises(ConfigurationError):
                model_catalog.get_model_by_number(bad)

    def test_extra_args_rules_are_additive(self):
        both = ModelProfile("x/y", "d", "y", nodes=2, trust_remote_code=True)
        self.assertEqual(model_catalog.build_extra_args(both), "--enable-dp-attention --trust-remote-code")
        single = ModelProfile("x/y", "d", "y", nodes=1, trust_remote_code=True)
        self.assertEqual(model_catalog.build_extra_args(single), "--trust-remote-code")
        plain = ModelProfile("x/y", "d", "y", nodes=1)
        self.assertEqual(model_catalog.build_extra_args(plain), "")

    def test_model_config_values(self):
        values = model_catalog.model_config_values(model_catalog.find_model("openai/gpt-oss-20b"))
        self.assertEqual(values["MODEL"], "openai/gpt-oss-20b")
        self.assertEqual(values["MEM_FRACTION"], "0.90")
        self.assertEqual(values["REASONING_PARSER"], "gpt-oss")
        self.assertEqual(values["TRUST_REMOTE_CODE"], False)
        self.assertEqual(values["EXTRA_ARGS"], "--enable-dp-attention")

    def test_find_model_unknown(self):
        self.assertIsNone(model_catalog.find_model("unknown/model"))

    def test_listing_marks_current(self):
        listing = model_catalog.format_model_listing("Qwen/Qwen2.5-7B-Instruct")
        self.assertIn(" * 3. Qwen2.5-7B", listing)
        self.assertIn("needs HF_TOKEN", listing)


if __name__ == "__main__":
    unittest.main()
