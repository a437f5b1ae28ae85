"""
Message catalog for user-facing texts

Texts live in zlink/locales/<language>.json and are looked up by dotted
key, e.g. 'claim_error.expired'. Error enums map onto keys by value, so
every ClaimError, PayoutError and WalletError has its own text.
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


LOCALES_DIR = Path(__file__).resolve().parent.parent / "locales"


class I18n:
    def __init__(self, locales_dir: Path = LOCALES_DIR, default_language: str = "en"):
        self.locales_dir = Path(locales_dir)
        self.default_language = default_language
        self.translations: Dict[str, Dict[str, Any]] = {}
        self._load_translations()

    def _load_translations(self) -> None:
        if not self.locales_dir.exists():
            logger.warning(f"Locales directory not found: {self.locales_dir}")
            return

        for locale_file in sorted(self.locales_dir.glob("*.json")):
            with open(locale_file, "r", encoding="utf-8") as f:
                self.translations[locale_file.stem] = json.load(f)

        logger.debug(f"Message catalogs loaded: {', '.join(self.translations) or 'none'}")

    def _lookup(self, key: str, language: Optional[str]) -> Optional[str]:
        catalog = self.translations.get(language or self.default_language)
        if catalog is None:
            catalog = self.translations.get(self.default_language, {})

        node: Any = catalog
        for part in key.split("."):
            if not isinstance(node, dict):
                return None
            node = node.get(part)
        return node if isinstance(node, str) else None

    def get(self, key: str, language: Optional[str] = None, **kwargs) -> str:
        """
        Text for `key` formatted with kwargs

        A missing key returns the key itself so a gap shows up in the chat
        instead of failing the handler.
        """
        template = self._lookup(key, language)
        if template is None:
            logger.warning(f"Text not found: {key}")
            return key

        try:
            return template.format(**kwargs) if kwargs else template
        except KeyError as e:
            logger.error(f"Missing placeholder {e} for text {key}")
            return template

    def has(self, key: str, language: Optional[str] = None) -> bool:
        return self._lookup(key, language) is not None


# Global catalog, read-only after import
i18n = I18n()
