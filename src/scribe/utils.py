import os
import re
import yaml
from pathlib import Path

from .logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = "config.yaml"
SCHEMA_FILE = Path(__file__).parent / "config_schema.yaml"

# Schema type name -> accepted Python types
_SCHEMA_TYPES = {
    'str': str,
    'int': int,
    'float': (int, float),
    'bool': bool,
    'dict': dict,
}

_MISSING = object()


def _user_config_path():
    """User config location (SCRIBE_CONFIG overrides ./config.yaml)."""
    return os.environ.get("SCRIBE_CONFIG", DEFAULT_CONFIG_PATH)


def _is_leaf(schema_item):
    return isinstance(schema_item, dict) and 'type' in schema_item


def _merge(target, overrides):
    """Recursively merge `overrides` into `target` in place."""
    for key, value in overrides.items():
        if value and isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge(target[key], value)
        else:
            target[key] = value


class ConfigManager:
    """
    Pipeline configuration.

    Defaults come from config_schema.yaml, where every leaf is
    `{value, type, description}` plus optional `options` and `min`. The user
    file is validated leaf by leaf before it is merged, and a rejected value
    keeps its default.
    """
    _instance = None

    def __init__(self):
        self.config = None
        self.schema = None

    @classmethod
    def initialize(cls, schema_path=None, config_path=None):
        if cls._instance is not None:
            raise RuntimeError("ConfigManager is already initialized")
        manager = cls()
        manager.schema = manager.load_config_schema(schema_path)
        manager.config = manager.load_default_config()
        manager.load_user_config(config_path or _user_config_path())
        cls._instance = manager

    @classmethod
    def reset(cls):
        """Drop the singleton (next access re-reads schema and user config)."""
        cls._instance = None

    @classmethod
    def get_instance(cls) -> 'ConfigManager':
        if cls._instance is None:
            cls.initialize()
        if cls._instance.config is None:  # type: ignore
            cls._instance.config = {}  # type: ignore
        return cls._instance  # type: ignore

    @classmethod
    def get_schema(cls):
        return cls.get_instance().schema

    @classmethod
    def _lookup(cls, keys):
        node = cls.get_instance().config
        for key in keys:
            if not isinstance(node, dict) or key not in node:
                return _MISSING
            node = node[key]
        return node

    @classmethod
    def get_config_section(cls, *keys):
        """Nested section as a dict ({} when absent)."""
        section = cls._lookup(keys)
        return section if isinstance(section, dict) else {}

    @classmethod
    def get_config_value(cls, *keys):
        """Nested value, or None when any key is missing."""
        value = cls._lookup(keys)
        return None if value is _MISSING else value

    @classmethod
    def set_config_value(cls, value, *keys):
        """Set a nested value, creating intermediate sections."""
        node = cls.get_instance().config
        for key in keys[:-1]:
            if not isinstance(node.get(key), dict):
                node[key] = {}
            node = node[key]
        node[keys[-1]] = value

    @staticmethod
    def load_config_schema(schema_path=None):
        with open(schema_path or SCHEMA_FILE, 'r', encoding='utf-8') as file:
            return yaml.safe_load(file)

    def load_default_config(self):
        """Defaults taken from the schema's `value` entries."""
        def defaults(node):
            if _is_leaf(node) or (isinstance(node, dict) and 'value' in node):
                return node.get('value')
            if isinstance(node, dict):
                return {key: defaults(child) for key, child in node.items()}
            return node

        return {section: defaults(node) for section, node in (self.schema or {}).items()}

    def _validate_config_value(self, value, schema_item, path):
        """True when `value` satisfies a schema leaf; logs why it does not."""
        if not _is_leaf(schema_item) or value is None:
            return True

        expected = schema_item['type']
        accepted = _SCHEMA_TYPES.get(expected)
        problem = None

        if accepted is not None:
            # bool is an int subclass; YAML "yes" must not pass as a number
            if isinstance(value, bool) and expected in ('int', 'float'):
                problem = f"should be {expected}, got bool"
            elif not isinstance(value, accepted):
                problem = f"should be {expected}, got {type(value).__name__}"

        if problem is None and 'options' in schema_item and value not in schema_item['options']:
            problem = f"value '{value}' not in allowed options {schema_item['options']}"

        if problem is None and 'min' in schema_item and value < schema_item['min']:
            problem = f"value {value} is below the minimum {schema_item['min']}"

        if problem:
            logger.warning(f"Config validation: '{path}' {problem}. Using default.")
            return False
        return True

    def _validate_config_section(self, user_section, schema_section, path=""):
        """Validate user values in place, resetting rejected leaves to their default."""
        if not isinstance(schema_section, dict) or not isinstance(user_section, dict):
            return

        for key in schema_section.keys() & user_section.keys():
            schema_item = schema_section[key]
            current_path = f"{path}.{key}" if path else key
            if _is_leaf(schema_item):
                if not self._validate_config_value(user_section[key], schema_item, current_path):
                    user_section[key] = schema_item.get('value')
            else:
                self._validate_config_section(user_section[key], schema_item, current_path)

    def _check_window_settings(self):
        """Overlap must stay below the window size or windows never advance."""
        section = self.config.get('summarization') or {}
        window = section.get('window_size_tokens')
        overlap = section.get('overlap_tokens')
        if isinstance(window, int) and isinstance(overlap, int) and overlap >= window:
            defaults = self.load_default_config().get('summarization', {})
            logger.warning(
                f"Config validation: 'summarization.overlap_tokens' ({overlap}) must be smaller "
                f"than 'summarization.window_size_tokens' ({window}). Using defaults."
            )
            section['window_size_tokens'] = defaults.get('window_size_tokens')
            section['overlap_tokens'] = defaults.get('overlap_tokens')

    def load_user_config(self, config_path=DEFAULT_CONFIG_PATH):
        """Merge a validated user file over the defaults (missing file is fine)."""
        if not config_path or not os.path.isfile(config_path):
            return
        try:
            with open(config_path, 'r', encoding='utf-8') as file:
                user_config = yaml.safe_load(file) or {}
        except yaml.YAMLError as e:
            logger.error(f"Error in configuration file {config_path}: {e}. Using default configuration.")
            return

        self._validate_config_section(user_config, self.schema)
        _merge(self.config, user_config)
        self._check_window_settings()
        logger.info(f"Loaded configuration from {config_path}")

    @classmethod
    def save_config(cls, config_path=None):
        """Write the current configuration (temp file, then rename)."""
        instance = cls.get_instance()
        filepath = Path(config_path or _user_config_path())
        temp_path = filepath.with_suffix('.tmp')

        with open(temp_path, 'w', encoding='utf-8') as file:
            yaml.safe_dump(instance.config, file, default_flow_style=False)
        try:
            temp_path.replace(filepath)
        except OSError:
            temp_path.unlink(missing_ok=True)
            raise

    @classmethod
    def reload_config(cls):
        instance = cls.get_instance()
        instance.config = instance.load_default_config()
        instance.load_user_config(_user_config_path())

    @classmethod
    def console_print(cls, message):
        """Echo to stdout when misc.print_to_terminal is on."""
        if cls._instance and (cls._instance.config or {}).get('misc', {}).get('print_to_terminal'):
            print(message)



class TextProcessor:
    """Centralized utility for cleaning recognized segment text."""

    # Filler words to remove (case insensitive)
    FILLERS = [
        r'\bum+\b', r'\buh+\b', r'\bah+\b', r'\beh+\b',
        r'\bhmm+\b', r'\bmm+\b', r'\bhm+\b',
    ]

    # ASR hallucinations - ONLY removed at end of a segment
    TRAILING_HALLUCINATIONS = [
        r"\s*we'?ll be right back\.?\s*$",
        r"\s*thank(s| you) for watching\.?\s*$",
        r"\s*subscribe to (my|the|our) channel\.?\s*$",
        r"\s*please (like and )?subscribe\.?\s*$",
        r"\s*see you (in the )?next (one|video|time)\.?\s*$",
        r"\s*don'?t forget to (like and )?subscribe\.?\s*$",
        r"\s*\[music\]\s*$",
        r"\s*\[applause\]\s*$",
        r"\s*♪.*$",
    ]

    @staticmethod
    def apply_name_replacements(text, replacements=None):
        """Apply configured name spelling corrections."""
        if replacements is None:
            replacements = ConfigManager.get_config_value('post_processing', 'name_replacements') or {}
        for wrong, correct in replacements.items():
            # Case-insensitive word boundary replacement
            pattern = r'\b' + re.escape(wrong) + r'\b'
            text = re.sub(pattern, correct, text, flags=re.IGNORECASE)
        return text

    @classmethod
    def remove_filler_words(cls, text):
        """Remove common filler words and hallucinated outros."""
        for pattern in cls.TRAILING_HALLUCINATIONS:
            text = re.sub(pattern, '', text, flags=re.IGNORECASE)

        for filler in cls.FILLERS:
            text = re.sub(filler, '', text, flags=re.IGNORECASE)

        # Clean up resulting issues
        text = re.sub(r'\s+', ' ', text)  # Multiple spaces to single
        text = re.sub(r'\s+([,.?!])', r'\1', text)  # Space before punctuation
        text = re.sub(r'([,.?!])\s*\1+', r'\1', text)  # Duplicate punctuation
        text = re.sub(r',\s*\.', '.', text)  # Comma followed by period
        text = re.sub(r'^\s*[,.]\s*', '', text)  # Leading comma/period
        return text.strip()

    @staticmethod
    def ensure_ending_punctuation(text):
        """Ensure text ends with proper punctuation."""
        text = text.strip()
        if text and text[-1] not in '.?!':
            text += '.'
        return text

    @classmethod
    def process(cls, text, remove_fillers=True, replacements=None):
        """Apply all post-processing steps to a recognized segment."""
        if not text or not text.strip():
            return ""

        text = text.strip()
        if remove_fillers:
            text = cls.remove_filler_words(text)
        text = cls.apply_name_replacements(text, replacements)
        return cls.ensure_ending_punctuation(text)
