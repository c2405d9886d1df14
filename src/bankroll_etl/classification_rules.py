"""bankroll_etl.classification_rules

Prioritized keyword rules that classify PBT's free-text game columns.

Responsibilities:
  - Hold the built-in rules (DEFAULT_RULES) used when no rule file is given
  - Load and validate YAML override files from config/classification_rules/*.yml
  - Classify the 'variant' column into a game type and the 'game'/'limit'
    columns into a variant code

Rules are evaluated in the listed order and the first match wins, so a
keyword that should take precedence must appear earlier in the file.

Usage:
    from pathlib import Path
    from bankroll_etl.classification_rules import load_rule_set, classify_game_type

    rules = load_rule_set(Path("config/classification_rules/pbt_bankroll.yml"))
    classify_game_type("Tournament ($50 MTT)", rules)  # -> "tournament"
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from bankroll_etl.normalize import normalize_space

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

VALID_GAME_TYPES = frozenset({"cash", "tournament", "sng"})

REQUIRED_YAML_KEYS = frozenset({
    "version",
    "game_type_rules",
    "default_game_type",
    "variant_rules",
    "default_variant",
})

REQUIRED_VARIANT_RULE_KEYS = frozenset({"game", "limit", "match", "otherwise"})


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class RuleSetValidationError(ValueError):
    """Raised when a YAML classification file fails schema validation."""


# ---------------------------------------------------------------------------
# Rule dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GameTypeRule:
    keywords: tuple[str, ...]
    game_type: str

    def matches(self, text: str) -> bool:
        return any(k in text for k in self.keywords)


@dataclass(frozen=True)
class VariantRule:
    """'game' keyword selects the rule; 'limit' keyword picks match vs otherwise."""

    game_keyword: str
    limit_keyword: str
    match_code: str
    fallback_code: str

    def resolve(self, game: str, limit: str) -> str | None:
        if self.game_keyword not in game:
            return None
        return self.match_code if self.limit_keyword in limit else self.fallback_code


@dataclass
class ClassificationRules:
    version: str
    game_type_rules: list[GameTypeRule]
    default_game_type: str
    variant_rules: list[VariantRule]
    default_variant: str
    yaml_hash: str | None = None


DEFAULT_RULES = ClassificationRules(
    version="builtin",
    game_type_rules=[
        GameTypeRule(("tournament", "mtt"), "tournament"),
        GameTypeRule(("sng", "sit"), "sng"),
    ],
    default_game_type="cash",
    variant_rules=[
        VariantRule("hold", "no limit", "nlhe", "lhe"),
        VariantRule("omaha", "pot", "plo", "omaha"),
    ],
    default_variant="nlhe",
)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def classify_game_type(text: str | None, rules: ClassificationRules = DEFAULT_RULES) -> str:
    lowered = (normalize_space(text) or "").lower()
    for rule in rules.game_type_rules:
        if rule.matches(lowered):
            return rule.game_type
    return rules.default_game_type


def classify_variant(
    game: str | None,
    limit: str | None,
    rules: ClassificationRules = DEFAULT_RULES,
) -> str:
    game_l = (normalize_space(game) or "").lower()
    limit_l = (normalize_space(limit) or "").lower()
    for rule in rules.variant_rules:
        code = rule.resolve(game_l, limit_l)
        if code is not None:
            return code
    return rules.default_variant


# ---------------------------------------------------------------------------
# Loader + validator
# ---------------------------------------------------------------------------

def load_rule_set(yaml_path: Path) -> ClassificationRules:
    """Load, validate, and return ClassificationRules from a YAML file.

    Raises:
        RuleSetValidationError: If any required field is missing or invalid.
        FileNotFoundError: If the YAML file does not exist.
    """
    raw = yaml_path.read_text(encoding="utf-8")
    try:
        data: Any = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise RuleSetValidationError(f"Invalid YAML: {exc}") from exc
    validate_rule_set(data)
    return ClassificationRules(
        version=str(data["version"]),
        game_type_rules=[
            GameTypeRule(
                tuple(str(k).lower() for k in rule["keywords"]),
                str(rule["game_type"]),
            )
            for rule in data["game_type_rules"]
        ],
        default_game_type=str(data["default_game_type"]),
        variant_rules=[
            VariantRule(
                str(rule["game"]).lower(),
                str(rule["limit"]).lower(),
                str(rule["match"]),
                str(rule["otherwise"]),
            )
            for rule in data["variant_rules"]
        ],
        default_variant=str(data["default_variant"]),
        yaml_hash=hashlib.sha256(raw.encode("utf-8")).hexdigest(),
    )


def validate_rule_set(data: Any) -> None:
    """Raise RuleSetValidationError if data does not match the rule file schema.

    Validates:
      - Required top-level keys present
      - every game type (rules and default) is cash, tournament or sng
      - game type rules carry a non-empty keyword list
      - variant rules carry game/limit keywords and non-blank codes
    """
    if not isinstance(data, dict):
        raise RuleSetValidationError("YAML root must be a mapping.")

    missing_keys = REQUIRED_YAML_KEYS - set(data.keys())
    if missing_keys:
        raise RuleSetValidationError(f"Missing required YAML keys: {sorted(missing_keys)}")

    if data["default_game_type"] not in VALID_GAME_TYPES:
        raise RuleSetValidationError(
            f"Invalid default_game_type '{data['default_game_type']}'. "
            f"Must be one of {sorted(VALID_GAME_TYPES)}."
        )
    if not str(data["default_variant"] or "").strip():
        raise RuleSetValidationError("'default_variant' must not be blank.")

    game_type_rules = data["game_type_rules"]
    if not isinstance(game_type_rules, list):
        raise RuleSetValidationError("'game_type_rules' must be a list.")
    for idx, rule in enumerate(game_type_rules):
        if not isinstance(rule, dict):
            raise RuleSetValidationError(f"game_type_rules[{idx}] must be a mapping.")
        if rule.get("game_type") not in VALID_GAME_TYPES:
            raise RuleSetValidationError(
                f"game_type_rules[{idx}] has invalid game_type '{rule.get('game_type')}'."
            )
        keywords = rule.get("keywords")
        if not isinstance(keywords, list) or not keywords:
            raise RuleSetValidationError(
                f"game_type_rules[{idx}] 'keywords' must be a non-empty list."
            )
        if any(not str(k).strip() for k in keywords):
            raise RuleSetValidationError(f"game_type_rules[{idx}] has a blank keyword.")

    variant_rules = data["variant_rules"]
    if not isinstance(variant_rules, list):
        raise RuleSetValidationError("'variant_rules' must be a list.")
    for idx, rule in enumerate(variant_rules):
        if not isinstance(rule, dict):
            raise RuleSetValidationError(f"variant_rules[{idx}] must be a mapping.")
        missing = REQUIRED_VARIANT_RULE_KEYS - set(rule.keys())
        if missing:
            raise RuleSetValidationError(
                f"variant_rules[{idx}] missing keys: {sorted(missing)}"
            )
        for key in sorted(REQUIRED_VARIANT_RULE_KEYS):
            if not str(rule[key] or "").strip():
                raise RuleSetValidationError(f"variant_rules[{idx}] '{key}' must not be blank.")
