"""planoverride - rule-driven setting overrides around units of work.

Rules map a request's identity key or text pattern to a list of setting
overrides. The engine picks at most one rule per request, applies its
settings for the duration of the wrapped call, and restores the previous
values on every exit path.

Example:
    >>> from planoverride import OverrideEngine, SettingsRegistry, YamlRuleStore
    >>> engine = OverrideEngine(YamlRuleStore("rules.yaml"), SettingsRegistry())
    >>> engine.run(identity_key, query_text, planner.plan, query)
"""

from planoverride.core.constants import PLANOVERRIDE_VERSION
from planoverride.engine import EngineConfig, EngineState, OverrideEngine
from planoverride.rules import (
    Matcher,
    MemoryRuleStore,
    PatternMatcher,
    Rule,
    RuleCache,
    RuleSet,
    RuleStore,
    RuleStoreError,
    SqlRuleStore,
    YamlRuleStore,
    like_match,
)
from planoverride.settings import (
    UNSET,
    EnvironmentSettings,
    OverrideSession,
    RestoreError,
    SettingDefinition,
    SettingError,
    SettingsNamespace,
    SettingsRegistry,
    SettingType,
)

__version__ = PLANOVERRIDE_VERSION

__all__ = [
    "__version__",
    # Engine
    "OverrideEngine",
    "EngineConfig",
    "EngineState",
    # Rules
    "Rule",
    "RuleSet",
    "RuleStore",
    "RuleStoreError",
    "MemoryRuleStore",
    "YamlRuleStore",
    "SqlRuleStore",
    "RuleCache",
    "Matcher",
    "PatternMatcher",
    "like_match",
    # Settings
    "UNSET",
    "SettingsNamespace",
    "SettingsRegistry",
    "SettingDefinition",
    "SettingType",
    "SettingError",
    "EnvironmentSettings",
    "OverrideSession",
    "RestoreError",
]
