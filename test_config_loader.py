"""
===========================================================================
test_config_loader.py — Tests for Building the Configuration Snapshot
===========================================================================

We never probe a real ComfyUI here: build_config() is given a
StaticCapabilitySource and a temporary models folder.

    python -m pytest test_config_loader.py
===========================================================================
"""

import json
import os
import tempfile
import unittest
from unittest.mock import patch

from pydantic import ValidationError

from comfy_probe import StaticCapabilitySource
from config_loader import (
    LOAD_ENV_COMMANDS,
    Settings,
    build_config,
    find_checkpoint_name,
    get_env_preamble,
    load_settings,
    load_warmup_prompt,
)
from errors import (
    ConfigParseError,
    InvalidEnvironmentError,
    ModelRootUnreadable,
    ProbeOutputError,
)

SAMPLERS = ["euler", "euler_ancestral", "dpmpp_2m"]
SCHEDULERS = ["normal", "karras", "exponential"]

WARMUP_PROMPT = {
    "3": {"class_type": "KSampler", "inputs": {"seed": 1, "model": ["4", 0]}},
    "4": {"class_type": "CheckpointLoaderSimple", "inputs": {"ckpt_name": "v1-5-pruned.ckpt"}},
    "5": {"class_type": "EmptyLatentImage", "inputs": {"width": 512, "height": 512}},
}


class ConfigTestCase(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.comfy_dir = self._tmp.name
        self.model_dir = os.path.join(self.comfy_dir, "models")
        os.makedirs(os.path.join(self.model_dir, "checkpoints"))
        os.makedirs(os.path.join(self.model_dir, "loras"))
        for name in ("put_checkpoints_here", "modelA.safetensors"):
            with open(os.path.join(self.model_dir, "checkpoints", name), "w") as f:
                f.write("")
        self.source = StaticCapabilitySource(SAMPLERS, SCHEDULERS)

    def tearDown(self):
        self._tmp.cleanup()

    def make_settings(self, **overrides):
        values = {
            "comfy_home": self.comfy_dir,
            "model_dir": None,
            "output_dir": None,
            "input_dir": None,
            "warmup_prompt_file": None,
            "workflow_dir": os.path.join(self.comfy_dir, "workflows"),
            "port": 3000,
            "direct_address": "127.0.0.1",
            "comfyui_port_host": 8188,
            "base": "ai-dock",
        }
        values.update(overrides)
        with patch.dict(os.environ, {}, clear=True):
            return Settings(**values)

    def write_warmup(self, prompt):
        path = os.path.join(self.comfy_dir, "warmup.json")
        with open(path, "w", encoding="utf-8") as f:
            json.dump(prompt, f)
        return path


class TestBuildConfig(ConfigTestCase):

    def test_builds_snapshot(self):
        config = build_config(self.make_settings(), self.source)

        self.assertEqual(list(config.samplers), SAMPLERS)
        self.assertEqual(list(config.schedulers), SCHEDULERS)
        self.assertEqual(config.models["checkpoints"].entries, ("modelA.safetensors",))
        self.assertEqual(config.models["loras"].entries, ())
        self.assertEqual(config.comfy_url, "http://127.0.0.1:8188")
        self.assertEqual(config.self_url, "http://localhost:3000")
        self.assertEqual(config.model_dir, self.model_dir)
        self.assertEqual(config.output_dir, os.path.join(self.comfy_dir, "output"))
        self.assertEqual(config.input_dir, os.path.join(self.comfy_dir, "input"))
        self.assertIsNone(config.warmup_prompt)
        self.assertIsNone(config.warmup_ckpt)

    def test_capability_sets_accept_exactly_the_reported_values(self):
        config = build_config(self.make_settings(), self.source)

        for name in SAMPLERS:
            self.assertIn(name, config.samplers)
        for name in SCHEDULERS:
            self.assertEqual(config.schedulers.validate(name), name)
        self.assertNotIn("ddim", config.samplers)
        with self.assertRaises(ValueError):
            config.schedulers.validate("euler")

    def test_directory_overrides(self):
        settings = self.make_settings(
            model_dir=self.model_dir, output_dir="/data/out", input_dir="/data/in"
        )
        config = build_config(settings, self.source)
        self.assertEqual(config.output_dir, "/data/out")
        self.assertEqual(config.input_dir, "/data/in")

    def test_creates_workflow_dir(self):
        workflow_dir = os.path.join(self.comfy_dir, "nested", "workflows")
        build_config(self.make_settings(workflow_dir=workflow_dir), self.source)
        self.assertTrue(os.path.isdir(workflow_dir))

    def test_warmup_checkpoint_is_extracted(self):
        path = self.write_warmup(WARMUP_PROMPT)
        config = build_config(self.make_settings(warmup_prompt_file=path), self.source)

        self.assertEqual(config.warmup_ckpt, "v1-5-pruned.ckpt")
        self.assertEqual(config.warmup_prompt_payload(), WARMUP_PROMPT)

    def test_rebuild_is_identical(self):
        path = self.write_warmup(WARMUP_PROMPT)
        settings = self.make_settings(warmup_prompt_file=path)
        self.assertEqual(build_config(settings, self.source), build_config(settings, self.source))

    def test_snapshot_is_frozen(self):
        config = build_config(self.make_settings(), self.source)
        with self.assertRaises(ValidationError):
            config.wrapper_port = 9999

    def test_nested_containers_are_read_only(self):
        path = self.write_warmup(WARMUP_PROMPT)
        config = build_config(self.make_settings(warmup_prompt_file=path), self.source)
        checkpoints = config.models["checkpoints"]

        with self.assertRaises(AttributeError):
            checkpoints.entries.append("injected.ckpt")
        with self.assertRaises(TypeError):
            config.models["evil"] = checkpoints
        with self.assertRaises(TypeError):
            config.warmup_prompt["4"]["inputs"]["ckpt_name"] = "other.ckpt"
        with self.assertRaises(AttributeError):
            config.warmup_prompt["3"]["inputs"]["model"].append(1)

        self.assertNotIn("injected.ckpt", checkpoints.enum)
        self.assertNotIn("evil", config.models)
        self.assertEqual(config.warmup_prompt["4"]["inputs"]["ckpt_name"], "v1-5-pruned.ckpt")

    def test_warmup_payload_is_a_fresh_copy(self):
        path = self.write_warmup(WARMUP_PROMPT)
        config = build_config(self.make_settings(warmup_prompt_file=path), self.source)

        payload = config.warmup_prompt_payload()
        payload["4"]["inputs"]["ckpt_name"] = "other.ckpt"
        self.assertEqual(json.loads(json.dumps(config.warmup_prompt_payload())), WARMUP_PROMPT)

    def test_missing_model_dir_aborts(self):
        settings = self.make_settings(model_dir=os.path.join(self.comfy_dir, "nope"))
        with self.assertRaises(ModelRootUnreadable):
            build_config(settings, self.source)

    def test_probe_failure_aborts(self):
        with self.assertRaises(ProbeOutputError):
            build_config(self.make_settings(), StaticCapabilitySource([], SCHEDULERS))

    def test_default_source_probes_comfy_dir_with_preamble(self):
        with patch("config_loader.ComfyDescriptionProbe") as probe_cls:
            probe_cls.return_value = self.source
            build_config(self.make_settings())

        probe_cls.assert_called_once_with(self.comfy_dir, preamble=LOAD_ENV_COMMANDS["ai-dock"])

    def test_unknown_base_has_no_preamble(self):
        with patch("config_loader.ComfyDescriptionProbe") as probe_cls:
            probe_cls.return_value = self.source
            build_config(self.make_settings(base="plain"))

        probe_cls.assert_called_once_with(self.comfy_dir, preamble=None)


class TestWarmupPrompt(ConfigTestCase):

    def test_prompt_without_checkpoint_loader(self):
        prompt = {"5": {"class_type": "EmptyLatentImage", "inputs": {}}}
        loaded, ckpt = load_warmup_prompt(self.write_warmup(prompt))
        self.assertEqual(loaded, prompt)
        self.assertIsNone(ckpt)

    def test_first_loader_wins(self):
        prompt = {
            "1": {"class_type": "CheckpointLoaderSimple", "inputs": {"ckpt_name": "first.ckpt"}},
            "2": {"class_type": "CheckpointLoaderSimple", "inputs": {"ckpt_name": "second.ckpt"}},
        }
        self.assertEqual(find_checkpoint_name(prompt), "first.ckpt")

    def test_invalid_json(self):
        path = os.path.join(self.comfy_dir, "warmup.json")
        with open(path, "w") as f:
            f.write("{not json")
        with self.assertRaises(ConfigParseError) as ctx:
            load_warmup_prompt(path)
        self.assertIn("Failed to parse warmup prompt", str(ctx.exception))

    def test_missing_file(self):
        with self.assertRaises(ConfigParseError):
            load_warmup_prompt(os.path.join(self.comfy_dir, "missing.json"))

    def test_loader_without_ckpt_name(self):
        prompt = {"4": {"class_type": "CheckpointLoaderSimple", "inputs": {}}}
        with self.assertRaises(ConfigParseError):
            find_checkpoint_name(prompt)

    def test_linked_ckpt_name_is_rejected(self):
        prompt = {"4": {"class_type": "CheckpointLoaderSimple", "inputs": {"ckpt_name": ["10", 0]}}}
        with self.assertRaises(ConfigParseError):
            find_checkpoint_name(prompt)

        path = self.write_warmup(prompt)
        with self.assertRaises(ConfigParseError):
            build_config(self.make_settings(warmup_prompt_file=path), self.source)

    def test_build_config_propagates_parse_error(self):
        path = self.write_warmup(["not", "an", "object"])
        with self.assertRaises(ConfigParseError):
            build_config(self.make_settings(warmup_prompt_file=path), self.source)


class TestSettings(unittest.TestCase):

    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = load_settings()

        self.assertEqual(settings.cmd, "init.sh")
        self.assertEqual(settings.host, "::")
        self.assertEqual(settings.port, 3000)
        self.assertEqual(settings.comfyui_port_host, 8188)
        self.assertEqual(settings.startup_check_interval_s, 1)
        self.assertEqual(settings.startup_check_max_tries, 10)
        self.assertEqual(settings.comfy_home, "/opt/ComfyUI")
        self.assertEqual(settings.workflow_dir, "/workflows")
        self.assertEqual(settings.workflow_models, "all")
        self.assertTrue(settings.markdown_schema_descriptions)
        self.assertEqual(settings.base, "ai-dock")
        self.assertIsNone(settings.model_dir)

    def test_reads_environment(self):
        env = {
            "PORT": "4000",
            "COMFY_HOME": "/srv/comfy",
            "MODEL_DIR": "/srv/models",
            "MARKDOWN_SCHEMA_DESCRIPTIONS": "false",
            "STARTUP_CHECK_MAX_TRIES": "30",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = load_settings()

        self.assertEqual(settings.port, 4000)
        self.assertEqual(settings.comfy_home, "/srv/comfy")
        self.assertEqual(settings.model_dir, "/srv/models")
        self.assertFalse(settings.markdown_schema_descriptions)
        self.assertEqual(settings.startup_check_max_tries, 30)

    def test_malformed_number_fails(self):
        with patch.dict(os.environ, {"PORT": "not-a-port"}, clear=True):
            with self.assertRaises(InvalidEnvironmentError) as ctx:
                load_settings()
        self.assertIn("port", str(ctx.exception))

    def test_env_preamble(self):
        self.assertIn("venv-set.sh comfyui", get_env_preamble("ai-dock"))
        self.assertIsNone(get_env_preamble("some-other-image"))


if __name__ == "__main__":
    unittest.main()
