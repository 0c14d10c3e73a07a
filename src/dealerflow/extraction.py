"""Slot extraction from free-form buyer messages.

Every extractor is total: no match means None (or False), never an
exception. All matching runs on normalize_text() output after the typo
table has been applied, so "Tigo 5", "tiggo 5" and "TIGGO 5" extract the
same model.
"""

import logging
import re
from dataclasses import asdict, dataclass
from typing import NamedTuple, Optional

from dealerflow.text import find_keyword, keyword_pattern, normalize_text
from dealerflow.vocabulary import DEFAULT_VOCABULARY, Vocabulary

logger = logging.getLogger(__name__)

# Price tolerance applied to "ate X" (ceiling) and "acima de X" (floor).
PRICE_CEILING_TOLERANCE = 1.05
PRICE_FLOOR_TOLERANCE = 0.95

# Quantities such as "50 mil km" or "48 parcelas" are never prices.
# Counts of km, years, installments... are never prices, with or without "mil".
_QUANTITY = r"(?:kms?|anos?|dias?|mes|meses|horas?|semanas?|vezes|parcelas?|x)\b"
_NOT_QUANTITY = rf"(?!\s*(?:(?:mil|k)\s*)?{_QUANTITY})"
_UNIT = rf"(mil\b|k\b)?{_NOT_QUANTITY}"
_MONEY = r"(r\$\s*)?"

PRICE_RANGE = re.compile(
    rf"\b(?:entre|de)\s+{_MONEY}{_NUM}\s*{_UNIT}\s*(?:e|a|ate)\s+{_MONEY}{_NUM}\s*{_UNIT}"
)
PRICE_UP_TO = re.compile(rf"\bate\s+{_MONEY}{_NUM}\s*{_UNIT}")
PRICE_FROM = re.compile(
    rf"\b(?:acima\s+de|a\s+partir\s+de|partir\s+de|mais\s+de|acima)\s+{_MONEY}{_NUM}\s*{_UNIT}"
)
PRICE_BARE = re.compile(rf"{_MONEY}\b{_NUM}\s*(mil\b|k\b|reais\b)?{_NOT_QUANTITY}")

YEAR_FULL = re.compile(r"\b(20[1-3]\d)\b")
YEAR_SPLIT = re.compile(r"\b(\d{2})/(\d{2})\b")
YEAR_SHORT = re.compile(r"\b(?:ano|modelo)\s+(\d{2})\b")

MOTOR_PATTERNS = (
    re.compile(r"\bmotor\s*(\d[.,]\d)(?!\d)\s*(turbo|tsi|tfsi)?"),
    re.compile(r"\b(\d[.,]\d)(?!\d)\s*(turbo|tsi|tfsi)\b"),
    re.compile(r"\b(?:carro|quero|tem|um|uma)\s+(\d[.,]\d)(?!\d)()"),
)

# Possession or trade wording that makes "first model mentioned" unsafe.
TRADE_SCENARIO = re.compile(
    r"\b(?:tenho|ela tem|ele tem|meu carro|quero trocar|na troca)\b"
    r"|\bminha\s+\w+\s+(?:e|eh)\b"
)
TRADE_IN_CUES = (
    "tenho um", "tenho uma", "tenho o", "tenho a", "tenho pra trocar",
    "meu carro", "minha carro", "carro pra troca", "usado na troca",
    "na troca", "dar na troca", "aceita troca", "aceitam troca", "pega na troca",
    "trocar o meu", "trocar meu", "trocar minha", "trocar a minha",
    "vender o meu", "vender meu", "vender minha", "vender a minha",
    "esposa tem", "marido tem", "ela tem", "ele tem", "mae tem", "pai tem",
    "filho tem", "filha tem", "nos temos", "a gente tem",
    "dar de entrada", "como entrada", "quanto vale", "quanto pagam",
    "avaliar o meu", "avaliar meu",
)

INTEREST_CUE = re.compile(
    r"\b(?:quer(?:o|emos|endo|ia)?|procurando|procuro|busco|olhando"
    r"|interesse\s+(?:em|n[oa]|pel[oa])|comprar|pegar|adquirir|por)\b"
)
ARTICLES = re.compile(r"\s*(?:(?:um|uma|o|a|os|as|uns|umas|de|da|do|pra|para|outro|outra|novo|nova)\s+)*")

# Generic stock questions, and anecdotes that make earlier tokens narrative.
QUERY_MARKER = re.compile(
    r"\b(?:quais?|que)\s+carros?\b"
    r"|\b(?:quais?|qual)\s+(?:opcao|opcoes)\b"
    r"|\btem\s+(?:carro|opcao|algum|algo)\b"
    r"|\b(?:voces?|vcs?|tu)\s+tem\b"
    r"|\bentre\s+\d+"
    r"|\bate\s+\d+"
    r"|\bquer\s+saber\s+quais\b"
)
CASUAL_CONTEXT = (
    re.compile(r"\b(?:anda|andava|dirige|usa|pilota)\s+(?:num|numa|um|uma)\s+"),
    re.compile(
        r"\b(?:avo|vovo|tio|tia|primo|prima|vizinho|vizinha|amigo|amiga|colega|pai|mae"
        r"|irmao|irma|falecido|finado)\b.*?\b(?:tem|tinha|anda|andava|dirige|usa|possui"
        r"|achou|ganhou|herdou)\b"
    ),
    re.compile(r"\b(?:achou|encontrou|ganhou|herdou)\s+(?:um|uma|o|a)\s+"),
    re.compile(r"\bna\s+garagem\b|\bdo\s+(?:meu\s+)?(?:falecido|finado)\b"),
    re.compile(r"\b(?:ela|ele)\s+(?:tem|tinha|possui|anda)\b"),
)

TRANSMISSION_KEYWORDS = {
    "automatico": ("automatico", "automatica", "automaticos", "automatizado", "cvt", "cambio automatico"),
    "manual": ("manual", "mecanico", "mecanica", "cambio manual"),
}

# Order matters: "sem parcelar" must read as cash before "parcelar" reads as financing.
PAYMENT_KEYWORDS = (
    ("avista", ("a vista", "avista", "pix", "dinheiro", "transferencia", "pagar tudo", "valor total", "sem parcelar")),
    ("consorcio", ("consorcio", "carta de credito", "carta contemplada")),
    ("financiamento", (
        "financiamento", "financiar", "financiado", "financiada", "financio",
        "parcelar", "parcelado", "parcela", "parcelas", "prestacao", "prestacoes",
        "banco", "entrada", "dar entrada",
    )),
)

URGENCY_KEYWORDS = (
    ("sem_pressa", ("sem pressa", "pesquisando", "so olhando", "nao tenho pressa", "ainda pensando", "so curiosidade")),
    ("hoje", ("hoje", "agora mesmo", "urgente", "urgencia", "o mais rapido", "preciso logo", "pra ontem")),
    ("semana", ("essa semana", "esta semana", "semana que vem", "proxima semana", "nos proximos dias", "poucos dias", "em breve")),
    ("mes", ("esse mes", "este mes", "proximo mes", "mes que vem", "algumas semanas", "um tempo")),
)


class Mention(NamedTuple):
    start: int
    end: int
    value: str


@dataclass(frozen=True)
class SlotSignals:
    """Structured signals pulled out of one message."""

    model: Optional[str] = None
    make: Optional[str] = None
    price_min: Optional[int] = None
    price_max: Optional[int] = None
    category: Optional[str] = None
    color: Optional[str] = None
    transmission: Optional[str] = None
    payment_method: Optional[str] = None
    has_trade_in: bool = False
    trade_in_model: Optional[str] = None
    urgency: Optional[str] = None
    year: Optional[int] = None
    motor: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not any(asdict(self).values())

    def as_slots(self) -> dict:
        """Map onto ConversationState slot names, dropping empty values."""
        slots = {
            "category": self.category,
            "make": self.make,
            "model": self.model,
            "budget_min": self.price_min,
            "budget_max": self.price_max,
            "payment_method": self.payment_method,
            "has_trade_in": True if self.has_trade_in else None,
            "trade_in_model": self.trade_in_model,
            "urgency": self.urgency,
            "transmission": self.transmission,
            "color": self.color,
            "motor": self.motor,
            "year_min": self.year,
            "year_max": self.year,
        }
        return {k: v for k, v in slots.items() if v is not None}


def _to_amount(raw: str, unit: Optional[str]) -> int:
    value = int(raw.replace(".", ""))
    if unit in ("mil", "k") or value < 1000:
        value *= 1000
    return value


def _looks_like_year(raw: str, unit: Optional[str], money: Optional[str]) -> bool:
    if unit or money or "." in raw:
        return False
    return 1990 <= int(raw) <= 2039


class SlotExtractor:
    """Vocabulary-driven extractor. One instance per market."""

    def __init__(self, vocabulary: Vocabulary = DEFAULT_VOCABULARY):
        self.vocabulary = vocabulary
        self._typos = [
            (keyword_pattern(typo), vocabulary.typos[typo]) for typo in vocabulary.typos_by_length()
        ]
        self._models = [(m, keyword_pattern(m)) for m in vocabulary.models_by_length()]
        self._brands = [
            (b, keyword_pattern(b)) for b in sorted(vocabulary.brands, key=len, reverse=True)
        ]
        self._categories = [(k, keyword_pattern(k)) for k in vocabulary.categories]
        self._colors = [(k, keyword_pattern(k)) for k in vocabulary.colors]

    # --- text preparation ---

    def prepare(self, text: str) -> str:
        """Normalize and apply the typo table."""
        normalized = normalize_text(text)
        for pattern, fixed in self._typos:
            normalized = pattern.sub(fixed, normalized)
        return normalized

    # --- mentions ---

    def _claim(self, text: str, candidates) -> list[Mention]:
        """Non-overlapping matches, longest candidate first, in text order."""
        taken: list[Mention] = []
        for name, pattern in candidates:
            for match in pattern.finditer(text):
                if any(match.start() < m.end and m.start < match.end() for m in taken):
                    continue
                taken.append(Mention(match.start(), match.end(), name))
        return sorted(taken)

    def model_mentions(self, text: str) -> list[Mention]:
        mentions = self._claim(text, self._models)
        brands_named = {m.value for m in self.brand_mentions(text)}
        named = {self.vocabulary.brands[b] for b in brands_named}
        return [
            m for m in mentions
            if m.value not in self.vocabulary.brand_qualified
            or self.vocabulary.brand_of(m.value) in named
        ]

    def brand_mentions(self, text: str) -> list[Mention]:
        return self._claim(text, self._brands)

    # --- context detection ---

    def is_trade_scenario(self, text: str) -> bool:
        if TRADE_SCENARIO.search(text):
            return True
        return any(find_keyword(text, cue) >= 0 for cue in TRADE_IN_CUES)

    def _query_position(self, text: str) -> Optional[int]:
        """Start of the generic query when the message also carries an anecdote."""
        query = QUERY_MARKER.search(text)
        if not query:
            return None
        if not any(p.search(text) for p in CASUAL_CONTEXT):
            return None
        return query.start()

    def _drop_casual(self, text: str, mentions: list[Mention]) -> list[Mention]:
        query_pos = self._query_position(text)
        if query_pos is None:
            return mentions
        kept = [m for m in mentions if m.start >= query_pos]
        if len(kept) != len(mentions):
            logger.debug(f"Suppressed casual mentions before query marker: {mentions[:len(mentions) - len(kept)]}")
        return kept

    @staticmethod
    def _after_cues(text: str, mentions: list[Mention]) -> list[Mention]:
        """Mentions sitting right after an interest cue (articles skipped)."""
        starts = {m.start: m for m in mentions}
        found = []
        for cue in INTEREST_CUE.finditer(text):
            pos = ARTICLES.match(text, cue.end()).end()
            if pos in starts and starts[pos] not in found:
                found.append(starts[pos])
        return found

    @staticmethod
    def _last_cue_end(text: str) -> int:
        last = -1
        for cue in INTEREST_CUE.finditer(text):
            last = cue.end()
        return last

    def _resolve_interest(self, text: str, mentions: list[Mention], exclude: Optional[str]) -> Optional[Mention]:
        direct = self._after_cues(text, mentions)
        if direct:
            return direct[0]
        last = self._last_cue_end(text)
        if last < 0:
            return None
        for m in mentions:
            if m.start >= last and m.value != exclude:
                return m
        return None

    # --- individual extractors ---

    def extract_trade_in(self, text: str) -> tuple[bool, Optional[str]]:
        """(has_trade_in, trade_in_model)."""
        text = self.prepare(text)
        cue_positions = []
        for cue in TRADE_IN_CUES:
            pos = find_keyword(text, cue)
            if pos >= 0:
                cue_positions.append((pos, pos + len(cue)))
        if not cue_positions:
            return False, None
        cue_start, cue_end = min(cue_positions)
        mentions = self.model_mentions(text)
        interest = set(self._after_cues(text, mentions))
        for m in mentions:
            if m.start >= cue_end and m not in interest:
                return True, m.value
        for m in mentions:
            if m.start < cue_start and m not in interest:
                return True, m.value
        return True, None

    def extract_model(self, text: str) -> Optional[str]:
        text = self.prepare(text)
        mentions = self.model_mentions(text)
        if not mentions:
            return None
        if self.is_trade_scenario(text):
            _, possessed = self.extract_trade_in(text)
            chosen = self._resolve_interest(text, mentions, exclude=possessed)
            logger.debug(f"Trade scenario: possessed={possessed} interest={chosen.value if chosen else None}")
            return chosen.value if chosen else None
        mentions = self._drop_casual(text, mentions)
        return mentions[0].value if mentions else None

    def extract_make(self, text: str) -> Optional[str]:
        return self._make_for(text, self.extract_model(text))

    def _make_for(self, text: str, model: Optional[str]) -> Optional[str]:
        """Brand of the extracted model, else a directly named brand."""
        if model:
            return self.vocabulary.brand_of(model)
        text = self.prepare(text)
        mentions = self.brand_mentions(text)
        if not mentions:
            return None
        if self.is_trade_scenario(text):
            chosen = self._resolve_interest(text, mentions, exclude=None)
        else:
            kept = self._drop_casual(text, mentions)
            chosen = kept[0] if kept else None
        return self.vocabulary.brands[chosen.value] if chosen else None

    def extract_price(self, text: str) -> tuple[Optional[int], Optional[int]]:
        """(price_min, price_max) in currency units, either side may be None."""
        text = self.prepare(text)

        for match in PRICE_RANGE.finditer(text):
            money1, raw1, unit1, money2, raw2, unit2 = match.groups()
            if _looks_like_year(raw1, unit1 or unit2, money1) and _looks_like_year(raw2, unit2, money2):
                continue
            low = _to_amount(raw1, unit1 or unit2)
            high = _to_amount(raw2, unit2 or unit1)
            return min(low, high), max(low, high)

        match = PRICE_UP_TO.search(text)
        if match and not _looks_like_year(match.group(2), match.group(3), match.group(1)):
            return None, round(_to_amount(match.group(2), match.group(3)) * PRICE_CEILING_TOLERANCE)

        match = PRICE_FROM.search(text)
        if match and not _looks_like_year(match.group(2), match.group(3), match.group(1)):
            return round(_to_amount(match.group(2), match.group(3)) * PRICE_FLOOR_TOLERANCE), None

        for match in PRICE_BARE.finditer(text):
            money, raw, unit = match.groups()
            if not (unit or money):
                continue
            value = _to_amount(raw, unit if unit != "reais" else None)
            return round(value * PRICE_FLOOR_TOLERANCE), round(value * PRICE_CEILING_TOLERANCE)

        return None, None

    def extract_category(self, text: str) -> Optional[str]:
        text = self.prepare(text)
        mentions = self._claim(text, self._categories)
        return self.vocabulary.categories[mentions[0].value] if mentions else None

    def extract_color(self, text: str) -> Optional[str]:
        text = self.prepare(text)
        mentions = self._drop_casual(text, self._claim(text, self._colors))
        return self.vocabulary.colors[mentions[0].value] if mentions else None

    def extract_transmission(self, text: str) -> Optional[str]:
        text = self.prepare(text)
        hits = []
        for value, keywords in TRANSMISSION_KEYWORDS.items():
            positions = [find_keyword(text, kw) for kw in keywords]
            positions = [p for p in positions if p >= 0]
            if positions:
                hits.append((min(positions), value))
        return min(hits)[1] if hits else None

    def extract_payment_method(self, text: str) -> Optional[str]:
        text = self.prepare(text)
        for value, keywords in PAYMENT_KEYWORDS:
            if any(find_keyword(text, kw) >= 0 for kw in keywords):
                return value
        return None

    def extract_urgency(self, text: str) -> Optional[str]:
        text = self.prepare(text)
        for value, keywords in URGENCY_KEYWORDS:
            if any(find_keyword(text, kw) >= 0 for kw in keywords):
                return value
        return None

    def extract_year(self, text: str) -> Optional[int]:
        text = self.prepare(text)
        split = YEAR_SPLIT.search(text)
        if split and 10 <= int(split.group(2)) <= 39:
            return 2000 + int(split.group(2))
        full = YEAR_FULL.search(text)
        if full:
            return int(full.group(1))
        short = YEAR_SHORT.search(text)
        if short and 10 <= int(short.group(1)) <= 39:
            return 2000 + int(short.group(1))
        return None

    def extract_motor(self, text: str) -> Optional[str]:
        text = self.prepare(text)
        for pattern in MOTOR_PATTERNS:
            match = pattern.search(text)
            if match:
                value = match.group(1).replace(",", ".")
                turbo = bool(match.group(2)) or find_keyword(text, "turbo") >= 0
                return f"{value} turbo" if turbo else value
        return None

    # --- all together ---

    def extract(self, text: str) -> SlotSignals:
        """Extract every slot signal from one message."""
        if not text or not text.strip():
            return SlotSignals()
        model = self.extract_model(text)
        price_min, price_max = self.extract_price(text)
        has_trade_in, trade_in_model = self.extract_trade_in(text)
        return SlotSignals(
            model=model,
            make=self._make_for(text, model),
            price_min=price_min,
            price_max=price_max,
            category=self.extract_category(text),
            color=self.extract_color(text),
            transmission=self.extract_transmission(text),
            payment_method=self.extract_payment_method(text),
            has_trade_in=has_trade_in,
            trade_in_model=trade_in_model,
            urgency=self.extract_urgency(text),
            year=self.extract_year(text),
            motor=self.extract_motor(text),
        )


_default = SlotExtractor()


def extract_slots(text: str) -> SlotSignals:
    return _default.extract(text)


def extract_model(text: str) -> Optional[str]:
    return _default.extract_model(text)


def extract_make(text: str) -> Optional[str]:
    return _default.extract_make(text)


def extract_price(text: str) -> tuple[Optional[int], Optional[int]]:
    return _default.extract_price(text)


def extract_category(text: str) -> Optional[str]:
    return _default.extract_category(text)


def extract_color(text: str) -> Optional[str]:
    return _default.extract_color(text)


def extract_year(text: str) -> Optional[int]:
    return _default.extract_year(text)


def extract_trade_in(text: str) -> tuple[bool, Optional[str]]:
    return _default.extract_trade_in(text)
