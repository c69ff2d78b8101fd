"""Chat phase graph for the fragrance lab.

The linear flow and its exceptions are declared here as data so the
state machine, the scents store and the tests all read the same tables.
"""

from enum import Enum
from typing import NamedTuple


class ChatPhase(str, Enum):
    """Step of the recipe-building conversation.

    Values match the identifiers the storefront frontend already uses.
    """

    WELCOME = "welcome"
    INTRO = "intro"
    THEME_SELECTED = "themeSelected"
    TOP = "top"
    MIDDLE = "middle"
    BASE = "base"
    FINALIZED = "finalized"
    COMPLETE = "complete"


class NoteCategory(str, Enum):
    """Note layer of a fragrance."""

    TOP = "top"
    MIDDLE = "middle"
    BASE = "base"


class PhaseShortcut(str, Enum):
    """Named exceptions to the linear phase graph."""

    OMAKASE = "omakase"
    ALL_SCENTS_SELECTED = "all_scents_selected"
    FINISH_KEYWORD = "finish_keyword"


class ShortcutRule(NamedTuple):
    """Edge allowed only when its shortcut is named by the caller."""

    from_phases: frozenset[ChatPhase]
    to_phase: ChatPhase
    keywords: tuple[str, ...] = ()
    exact_match: bool = False


PHASE_ORDER: tuple[ChatPhase, ...] = (
    ChatPhase.WELCOME,
    ChatPhase.INTRO,
    ChatPhase.THEME_SELECTED,
    ChatPhase.TOP,
    ChatPhase.MIDDLE,
    ChatPhase.BASE,
    ChatPhase.FINALIZED,
    ChatPhase.COMPLETE,
)

# Canonical successor of each phase; complete is terminal.
PHASE_TRANSITIONS: dict[ChatPhase, ChatPhase | None] = {
    phase: PHASE_ORDER[index + 1] if index + 1 < len(PHASE_ORDER) else None
    for index, phase in enumerate(PHASE_ORDER)
}

PHASE_NOTE_CATEGORY: dict[ChatPhase, NoteCategory] = {
    ChatPhase.TOP: NoteCategory.TOP,
    ChatPhase.MIDDLE: NoteCategory.MIDDLE,
    ChatPhase.BASE: NoteCategory.BASE,
}

PHASE_SHORTCUTS: dict[PhaseShortcut, ShortcutRule] = {
    # "leave it to you" skips the theme and top/middle steps
    PhaseShortcut.OMAKASE: ShortcutRule(
        from_phases=frozenset({ChatPhase.INTRO, ChatPhase.THEME_SELECTED}),
        to_phase=ChatPhase.BASE,
        keywords=("おまかせ", "一気に", "全部"),
    ),
    PhaseShortcut.ALL_SCENTS_SELECTED: ShortcutRule(
        from_phases=frozenset({ChatPhase.BASE}),
        to_phase=ChatPhase.FINALIZED,
    ),
    PhaseShortcut.FINISH_KEYWORD: ShortcutRule(
        from_phases=frozenset({ChatPhase.FINALIZED}),
        to_phase=ChatPhase.COMPLETE,
        keywords=("おわり", "完了", "はい"),
        exact_match=True,
    ),
}

PHASE_DISPLAY_NAMES: dict[ChatPhase, str] = {
    ChatPhase.WELCOME: "ようこそ",
    ChatPhase.INTRO: "イメージ入力",
    ChatPhase.THEME_SELECTED: "テーマ選択",
    ChatPhase.TOP: "ステップ2: トップノート",
    ChatPhase.MIDDLE: "ステップ3: ミドルノート",
    ChatPhase.BASE: "ステップ4: ベースノート",
    ChatPhase.FINALIZED: "ステップ5: レシピ確認",
    ChatPhase.COMPLETE: "ステップ6: 完了",
}

# Phases in which the order button may be enabled.
ORDERABLE_PHASES: frozenset[ChatPhase] = frozenset({ChatPhase.FINALIZED, ChatPhase.COMPLETE})

# Phases in which a reply may carry a recipe.
RECIPE_PHASES = ORDERABLE_PHASES


def keyword_matches(rule: ShortcutRule, user_input: str | None) -> bool:
    """Check whether user text triggers a keyword shortcut."""
    if not user_input or not rule.keywords:
        return False
    text = user_input.strip()
    if rule.exact_match:
        return text in rule.keywords
    return any(keyword in text for keyword in rule.keywords)
