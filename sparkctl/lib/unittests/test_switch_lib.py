import os
import tempfile
import unittest
from unittest.mock import MagicMock, patch

from sparkctl.lib import config_lib
from sparkctl.lib import switch_lib
from sparkctl.lib.model_catalog import CATALOG, get_model_by_number
from sparkctl.lib.readiness_lib import ReadinessState, Verdict
from sparkctl.lib.utils_lib import SparkctlError

LLAMA_8B = get_model_by_number(10)
QWEN_7B = get_model_by_number(3)


@patch('sparkctl.lib.switch_lib.print_banner')
@patch('sparkctl.lib.switch_lib.print_warning')
@patch('sparkctl.lib.switch_lib.print_msg')
class TestSwitchModel(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.config_dir = self.tmp.name
        with open(os.path.join(self.config_dir, 'config.env'), 'w') as fp:
            fp.write('MODEL="${MODEL:-openai/gpt-oss-120b}"\nWORKER_USER="spark"\n')
        env_patch = patch.dict(os.environ, {'HF_TOKEN': ''})
        env_patch.start()
        self.addCleanup(env_patch.stop)

    def test_skip_restart_only_writes_config(self, mock_msg, mock_warning, mock_banner):
        start, stop = MagicMock(), MagicMock()
        result = switch_lib.switch_model(self.config_dir, QWEN_7B, skip_restart=True, start=start, stop=stop)

        self.assertIsNone(result)
        start.assert_not_called()
        stop.assert_not_called()
        self.assertEqual(config_lib.get_current_model(self.config_dir), 'Qwen/Qwen2.5-7B-Instruct')

    def test_gated_model_abort(self, mock_msg, mock_warning, mock_banner):
        confirm = MagicMock(return_value=False)
        with self.assertRaises(SparkctlError):
            switch_lib.switch_model(self.config_dir, LLAMA_8B, skip_restart=True, confirm=confirm)
        confirm.assert_called_once()
        self.assertFalse(os.path.exists(os.path.join(self.config_dir, 'config.local.env')))

    def test_gated_model_continue(self, mock_msg, mock_warning, mock_banner):
        confirm = MagicMock(return_value=True)
        switch_lib.switch_model(self.config_dir, LLAMA_8B, skip_restart=True, confirm=confirm)
        mock_warning.assert_called_once()
        self.assertEqual(config_lib.get_current_model(self.config_dir), LLAMA_8B.model_id)

    def test_gated_model_with_token(self, mock_msg, mock_warning, mock_banner):
        with open(os.path.join(self.config_dir, 'config.local.env'), 'w') as fp:
            fp.write('HF_TOKEN="hf_abc"\n')
        confirm = MagicMock()
        switch_lib.switch_model(self.config_dir, LLAMA_8B, skip_restart=True, confirm=confirm)
        confirm.assert_not_called()
        with open(os.path.join(self.config_dir, 'config.local.env')) as fp:
            self.assertIn('HF_TOKEN="hf_abc"', fp.read())

    @patch('sparkctl.lib.switch_lib.benchmark_lib')
    def test_restart_and_probe(self, mock_bench, mock_msg, mock_warning, mock_banner):
        mock_bench.get_served_model.return_value = QWEN_7B.model_id
        mock_bench.probe_chat_completion.return_value = True
        start = MagicMock(return_value=ReadinessState(verdict=Verdict.READY))
        stop = MagicMock()

        state = switch_lib.switch_model(self.config_dir, QWEN_7B, start=start, stop=stop, sleep=MagicMock())

        self.assertEqual(state.verdict, Verdict.READY)
        stop.assert_called_once()
        settings = start.call_args[0][0]
        self.assertEqual(settings.model, QWEN_7B.model_id)
        kwargs = start.call_args[1]
        self.assertFalse(kwargs['head_only'])
        self.assertTrue(kwargs['skip_pull'])
        self.assertEqual(kwargs['ready_timeout'], switch_lib.SWITCH_READY_TIMEOUT)
        self.assertFalse(kwargs['print_summary'])
        mock_bench.probe_chat_completion.assert_called_once_with(QWEN_7B.model_id, port=30000)

    @patch('sparkctl.lib.switch_lib.benchmark_lib')
    def test_restart_not_ready_skips_probe(self, mock_bench, mock_msg, mock_warning, mock_banner):
        start = MagicMock(return_value=ReadinessState(verdict=Verdict.TIMED_OUT))
        switch_lib.switch_model(self.config_dir, QWEN_7B, start=start, stop=MagicMock())
        mock_bench.probe_chat_completion.assert_not_called()


class TestSwitchCatalog(unittest.TestCase):
    def test_every_entry_has_a_valid_config(self):
        for profile in CATALOG:
            values = switch_lib.model_config_values(profile)
            self.assertEqual(values['MODEL'], profile.model_id)


if __name__ == '__main__':
    unittest.main()
