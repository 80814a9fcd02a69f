# race_game/glyphs.py
import random

# Entrant display glyphs. Repeats in the raw list are dropped below, so every
# race draws from distinct glyphs.
_RAW_GLYPHS = [
    # Animals & nature
    "🐶", "🐱", "🐭", "🐹", "🐰", "🦊", "🐻", "🐼", "🐨", "🐯", "🦁", "🐮",
    "🐷", "🐸", "🐵", "🐔", "🐧", "🐦", "🦅", "🦉", "🦆", "🦢", "🐴", "🦄",
    "🦓", "🦒", "🦌", "🐂", "🐃", "🐄", "🐖", "🐏", "🐑", "🐐", "🦙", "🐘",
    "🦏", "🦛", "🐇", "🐿️", "🦔", "🐢", "🐍", "🦎", "🦂", "🦀", "🦞", "🦐",
    "🦑", "🐙", "🦈", "🐬", "🐋", "🐳", "🐠", "🐟", "🐡", "🐊", "🦖", "🦕",
    "🌵", "🎄", "🌲", "🌳", "🌴", "🌱", "🌿", "☘️", "🍀", "🍁", "🍂", "🍃",
    "🌷", "🌹", "🥀", "🌺", "🌸", "🌼", "🌻", "🌞", "🌝", "🌚", "🌙", "⭐",
    "🌟", "⚡",
    # Food & drink
    "🍏", "🍎", "🍐", "🍊", "🍋", "🍌", "🍉", "🍇", "🍓", "🍈", "🍒", "🍑",
    "🥭", "🍍", "🥥", "🥝", "🍅", "🍆", "🥑", "🥦", "🥬", "🥒", "🌶️", "🌽",
    "🥕", "🥔", "🍠", "🌭", "🍔", "🍟", "🍕", "🥪", "🌮", "🌯", "🥙", "🍜",
    "🍲", "🍝", "🍣", "🍤", "🍱", "🍛", "🥗", "🍩", "🍪", "🎂", "🍰", "🧁",
    "🍫", "🍬", "🍭", "🍮", "🍯", "🥛", "🍼", "☕", "🍵", "🍶", "🍺", "🍻",
    "🥂", "🍷", "🥃", "🍸", "🍹",
    # Sports & games
    "⚽", "🏀", "🏈", "⚾", "🎾", "🏐", "🏉", "🥏", "🎱", "🏓", "🏸", "🥅",
    "🏒", "🏑", "🥍", "🏏", "🥊", "🥋", "🎽", "🛹", "🛼", "⛸️", "🥌", "🎿",
    "⛷️", "🏂", "🪂", "🏋️", "🤼", "🤸", "⛹️", "🤺", "🤾", "🏌️", "🏇", "🧘",
    "🏄", "🏊", "🤽", "🚣", "🚵", "🚴", "🎮", "🎲", "♟️", "🧩", "🎯", "🎳",
    "🎤", "🎧", "🎼", "🎹", "🥁", "🎷", "🎺", "🎸", "🎻", "🪕",
    # Travel & places
    "🚗", "🚕", "🚙", "🚌", "🚎", "🏎️", "🚓", "🚑", "🚒", "🚐", "🚚", "🚛",
    "🚜", "🚲", "🛵", "🏍️", "🛺", "🚨", "🚔", "🚍", "🚘", "🚖", "✈️", "🛩️",
    "🛫", "🛬", "🚀", "🛸", "🚁", "🚂", "🚆", "🚇", "🚊", "🚉", "🚄", "🚅",
    "🚈", "🚝", "🚞", "🚋", "🚢", "⛴️", "🚤", "🛥️", "🛳️", "⛵", "🚟", "🚠",
    "🚡", "🛰️", "🛎️", "🗽", "🗼", "🏰", "🏯", "🏟️", "🎡", "🎢", "🎠",
    # Objects & symbols
    "⌚", "📱", "💻", "⌨️", "🖥️", "🖨️", "🖱️", "💽", "💾", "💿", "📀", "📷",
    "📸", "🎥", "📹", "📺", "📻", "🎙️", "🎚️", "🎛️", "☎️", "📞", "📟", "📠",
    "🔋", "🔌", "💡", "🔦", "🕯️", "🧯", "🛠️", "🔧", "🔨", "⚒️", "🛠️", "⛏️",
    "🪓", "🔩", "⚙️", "🧰", "🧲", "🔫", "💣", "🔪", "🗡️", "⚔️", "🛡️", "🚪",
    "🪑", "🛏️", "🛋️", "🚽", "🚿", "🛁", "🪠", "🧴", "🧷", "🧹", "🧺", "🧻",
    "🧼", "🧽", "🧯", "💎", "💍", "📿", "💄", "💅", "👑", "🧢", "👒", "🎩",
    "🎓", "🪖", "👠", "👟", "🥾", "🥿", "🧦", "🧤", "🧣", "👕", "👔", "👗",
    "👚", "👖", "🧥", "🥼", "🦺",
    # Money & misc
    "💰", "🪙", "💴", "💵", "💶", "💷", "💸", "💳", "🧾", "🏧", "🏦", "🏛️",
    "⚖️", "🔑", "🗝️", "🛎️", "🧭", "🗺️", "🧱", "🪨", "🪵", "🛖", "🏠", "🏡",
    "🏢", "🏣", "🏤", "🏥", "🏦", "🏨", "🏩", "🏪", "🏫", "🏬", "🏭", "🏯",
    "🏰",
    # Flags (subset, too many exist)
    "🏁", "🚩",
]

GLYPH_POOL = tuple(dict.fromkeys(_RAW_GLYPHS))


def pick_glyphs(count: int, rng=None) -> list:
    """Draws `count` glyphs without replacement."""
    rng = rng or random
    if not 0 < count <= len(GLYPH_POOL):
        raise ValueError(f"Cannot pick {count} glyphs from a pool of {len(GLYPH_POOL)}.")
    return rng.sample(GLYPH_POOL, count)


def random_track_length(rng=None, low: int = 90, high: int = 150) -> int:
    """A track length drawn uniformly from [low, high], both ends included."""
    rng = rng or random
    return rng.randint(low, high)
