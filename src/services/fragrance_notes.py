"""Essential oils in stock, grouped by note layer.

The chat agent may only suggest oils listed here; descriptions are the
canonical wording shown to customers.
"""

from src.models.phase import ChatPhase, NoteCategory
from src.schemas.chat import ChoiceOption

ESSENTIAL_OILS: dict[NoteCategory, dict[str, str]] = {
    NoteCategory.TOP: {
        "レモン": "シャープで爽やかな酸味のある柑橘の香り",
        "ベルガモット": "フローラル調の甘さを含む爽やかな柑橘の香り",
        "タンジェリン": "マンダリンに似た甘くジューシーな柑橘の香り",
        "ペパーミント": "鼻に抜ける強い清涼感のあるミントの香り",
        "シトロネラ": "レモングラスに似た爽やかな青臭いシトラス調の香り",
        "ジュニパー": "爽やかなウッディ調とほのかな甘さの香り",
        "カユプテ": "ユーカリに似た清涼感のある樟脳調の香り",
        "カンファー": "鋭く清涼感のある樟脳の香り",
        "タイム": "スパイシーでハーバルな温かみのある香り",
    },
    NoteCategory.MIDDLE: {
        "ローズ": "華やかで甘く優雅なバラの花の香り",
        "イランイラン": "甘美でエキゾチックな南国の花の香り",
        "カモミール": "リンゴのような甘さを持つ穏やかな花の香り",
        "ローズマリー": "シャープで清涼感のあるハーブの香り",
        "クラリセージ": "やや甘くハーバルで落ち着いた香り",
        "ジンジャー": "スパイシーで温かみのあるショウガの香り",
        "シナモン": "甘くスパイシーで温かみのある樹皮の香り",
        "クローブ": "甘さの中に鋭さを持つ濃厚なスパイスの香り",
    },
    NoteCategory.BASE: {
        "サンダルウッド": "柔らかで甘いウッディな香り",
        "シダーウッド": "乾いた樹木の落ち着いた香り",
        "パチュリ": "土っぽく甘いエキゾチックな香り",
        "ベチバー": "深く土壌のような落ち着いた香り",
        "バニラ": "甘く温かみのある香り",
        "フランキンセンス": "澄んだ樹木と柑橘が混ざる神聖な香り",
        "ミルラ": "苦味のあるスモーキーで重い樹脂の香り",
    },
}

NOTE_LABELS: dict[NoteCategory, str] = {
    NoteCategory.TOP: "トップノート",
    NoteCategory.MIDDLE: "ミドルノート",
    NoteCategory.BASE: "ベースノート",
}

# Used when a recipe must be completed without the user's input.
DEFAULT_NOTES: dict[NoteCategory, str] = {
    NoteCategory.TOP: "レモン",
    NoteCategory.MIDDLE: "ラベンダー",
    NoteCategory.BASE: "サンダルウッド",
}

DEFAULT_NOTE_REMARKS: dict[NoteCategory, str] = {
    NoteCategory.TOP: "爽やかな柑橘系の香りです。",
    NoteCategory.MIDDLE: "リラックス効果のある落ち着いた香りです。",
    NoteCategory.BASE: "深みのある温かい香りです。",
}

# Three suggestions per layer, in catalog order.
SUGGESTED_CHOICES: dict[NoteCategory, tuple[str, ...]] = {
    NoteCategory.TOP: ("レモン", "ベルガモット", "ペパーミント"),
    NoteCategory.MIDDLE: ("ローズ", "イランイラン", "カモミール"),
    NoteCategory.BASE: ("サンダルウッド", "シダーウッド", "バニラ"),
}


def describe_oil(name: str) -> str:
    """Catalog description of an oil, or an empty string."""
    for oils in ESSENTIAL_OILS.values():
        if name in oils:
            return oils[name]
    return ""


def suggested_choices(category: NoteCategory) -> list[ChoiceOption]:
    """Suggested options for a layer, with catalog descriptions."""
    return [ChoiceOption(name=name, description=describe_oil(name)) for name in SUGGESTED_CHOICES[category]]


def category_for_phase(phase: ChatPhase) -> NoteCategory | None:
    """Layer whose oils are offered while in ``phase``.

    The theme step already previews top notes.
    """
    return {
        ChatPhase.THEME_SELECTED: NoteCategory.TOP,
        ChatPhase.TOP: NoteCategory.TOP,
        ChatPhase.MIDDLE: NoteCategory.MIDDLE,
        ChatPhase.BASE: NoteCategory.BASE,
    }.get(phase)


def format_catalog() -> str:
    """Catalog section of the system prompt."""
    sections = []
    for category, oils in ESSENTIAL_OILS.items():
        lines = [f"{NOTE_LABELS[category]}："]
        lines.extend(f"- {name}：{description}" for name, description in oils.items())
        sections.append("\n".join(lines))
    return "\n\n".join(sections)
