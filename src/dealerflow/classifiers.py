import re

from dealerflow.extraction import extract_price
from dealerflow.text import match_any_keyword, normalize_text, starts_with_any
from dealerflow.vocabulary import CAR_BRANDS, CATEGORY_MAP, MODEL_TO_BRAND


SAFETY_KEYWORDS = {
    "suicidio", "me matar", "matar", "morte", "crime", "policia", "droga", "drogas",
    "processo", "processar", "justica", "advogado", "procon", "golpe", "fraude",
    "denunciar", "denuncia", "roubado", "clonado", "lavagem de dinheiro",
}

EXIT_KEYWORDS = {
    "tchau", "sair", "parar", "pare", "cancelar", "encerrar", "desisto",
    "nao quero mais", "sem interesse", "pare de mandar", "nao tenho interesse",
    "nao me mande mais", "remover meu numero",
}

NEGOTIATION_KEYWORDS = {
    "financiamento", "financiar", "entrada", "parcela", "parcelas", "troca", "trocar",
    "negociar", "pagamento", "juros", "condicoes", "fechar", "comprar", "vendedor",
    "visita", "simular", "simulacao", "desconto", "ultimo preco", "melhor preco",
    "pode baixar", "quero fechar", "vou comprar",
}

FRUSTRATION_KEYWORDS = {
    "burro", "idiota", "atendimento lixo", "falar com humano", "atendente", "gerente",
    "nao entende", "nao entendeu", "merda", "bosta", "robo", "pessoa de verdade",
    "ridiculo", "palhacada",
}

PRICE_KEYWORDS = {
    "detalhes", "informacoes", "ficha", "km", "quilometragem", "ano", "motor",
    "opcionais", "fotos", "mais", "preco", "valor", "custa", "quanto",
}

STOCK_REQUEST_KEYWORDS = {
    "tem", "tens", "estoque", "busco", "procuro", "queria", "gostaria",
    "quero ver", "disponivel", "disponiveis",
}

SHOW_OPTIONS_PATTERNS = (
    re.compile(r"\bver\s+(?:as\s+)?opcoes\b"),
    re.compile(r"\bmostra(?:r)?\b"),
    re.compile(r"\btem\s+algum\b"),
    re.compile(r"\bquais\s+tem\b"),
)

LOW_SIGNAL_RESPONSES = {
    "ok", "okay", "ta", "hum", "hmm", "entendi", "legal", "joia", "beleza",
    "pode ser", "sei la", "nao sei", "tanto faz", "talvez", "blz", "certo",
}

# Short replies that carry a slot even though they look like filler.
NOT_LOW_SIGNAL = {
    "suv", "sedan", "hatch", "pickup", "picape",
    "sp", "rj", "mg", "rs", "pr", "sc", "ba", "pe", "ce", "df", "go", "pa", "am", "ma",
}

GREETING_KEYWORDS = {
    "oi", "ola", "bom dia", "boa tarde", "boa noite", "tudo bem", "epa", "opa",
    "eae", "e ai", "salve", "oie",
}

CONFIRMATION_KEYWORDS = {
    "sim", "quero", "isso", "pode ser", "ok", "claro", "perfeito", "exato",
    "com certeza", "pode", "manda", "bora",
}

STORE_INFO_KEYWORDS = {
    "onde fica", "endereco", "telefone", "whatsapp", "localizacao", "horario",
    "aberto", "aberta", "fechado", "fechada", "funcionamento", "como chego",
}

OUT_OF_SCOPE_KEYWORDS = {
    "pizza", "lanche", "jogo", "futebol", "namoro", "namorar", "sexo",
    "receita", "novela", "aposta", "bitcoin",
}

LOW_SIGNAL_WORDS = {word for phrase in LOW_SIGNAL_RESPONSES for word in phrase.split()} | {"bom", "e"}
GREETING_WORDS = {word for phrase in GREETING_KEYWORDS for word in phrase.split()} | {
    "tudo", "td", "bem", "blz", "beleza", "pessoal", "amigo", "amiga", "como", "vai", "vc", "voce",
}
CONFIRMATION_WORDS = {word for phrase in CONFIRMATION_KEYWORDS for word in phrase.split()} | {
    "por", "favor", "entao", "ai", "la", "vamos", "beleza", "otimo", "mesmo",
}

VEHICLE_KEYWORDS = {"carro", "carros", "veiculo", "veiculos", "automovel", "seminovo", "seminovos"}
VEHICLE_VOCABULARY = frozenset(MODEL_TO_BRAND) | frozenset(CAR_BRANDS) | frozenset(CATEGORY_MAP) | VEHICLE_KEYWORDS

INTENT_KEYWORDS = {
    "negotiate": {
        "desconto", "negociar", "muito caro", "caro demais", "ta caro", "baixar",
        "melhor preco", "ultimo preco", "objecao", "nao cabe",
    },
    "visit": {
        "visitar", "visita", "test drive", "testdrive", "agendar", "ir ai", "ir la",
        "passar ai", "conhecer a loja",
    },
    "compare": {"comparar", "compara", "diferenca", "qual e melhor", "qual o melhor", "versus", "vs"},
    "browse": {"ver", "olhar", "opcoes", "estoque", "mostra", "procuro", "busco"},
}


def is_system_message(text: str) -> bool:
    """Bracketed messages injected by the platform, e.g. "[ANALISE DE VEICULO]"."""
    stripped = (text or "").strip()
    return stripped.startswith("[") and "]" in stripped


def is_safety_violation(text: str) -> bool:
    return match_any_keyword(text or "", SAFETY_KEYWORDS)


def is_exit_intent(text: str) -> bool:
    return match_any_keyword(text or "", EXIT_KEYWORDS)


def is_negotiation_intent(text: str) -> bool:
    """Financing, trade-in, closing or seller wording.

    System-injected messages never count, otherwise image analysis text
    would hand off the lead by accident.
    """
    if is_system_message(text):
        return False
    return match_any_keyword(text or "", NEGOTIATION_KEYWORDS)


def is_frustrated(text: str) -> bool:
    """Frustration keywords, shouting in caps, or a run of exclamation marks."""
    if not text:
        return False
    if match_any_keyword(text, FRUSTRATION_KEYWORDS):
        return True
    letters = [ch for ch in text if ch.isalpha()]
    if len(letters) > 10:
        caps = sum(1 for ch in letters if ch.isupper())
        if caps / len(letters) > 0.6:
            return True
    return text.count("!") >= 3


def is_price_inquiry(text: str) -> bool:
    """Asking about price or details without any financing or closing wording."""
    if is_negotiation_intent(text):
        return False
    return match_any_keyword(text or "", PRICE_KEYWORDS)


def is_stock_request(text: str) -> bool:
    if not text:
        return False
    normalized = normalize_text(text)
    if any(p.search(normalized) for p in SHOW_OPTIONS_PATTERNS):
        return True
    price_min, price_max = extract_price(text)
    if price_min or price_max:
        return True
    return match_any_keyword(normalized, STOCK_REQUEST_KEYWORDS)


def _words(text: str) -> list[str]:
    return re.findall(r"[\w$]+", normalize_text(text))


def _only_words(words: list[str], vocabulary: set[str]) -> bool:
    return bool(words) and all(word in vocabulary for word in words)


def is_low_signal(text: str) -> bool:
    """Short filler reply ("ok", "ta", "sei la") that carries no new information."""
    normalized = normalize_text(text).strip(" .!?,;")
    if normalized in NOT_LOW_SIGNAL:
        return False
    if len(normalized) <= 3:
        return True
    return _only_words(_words(normalized), LOW_SIGNAL_WORDS)


def is_greeting(text: str) -> bool:
    """A bare greeting; "oi, quero um suv" is not one."""
    normalized = normalize_text(text).strip(" .!?,;")
    if not normalized or len(normalized) >= 30:
        return False
    if not starts_with_any(re.sub(r"[^\w\s]", " ", normalized), GREETING_KEYWORDS):
        return False
    return _only_words(_words(normalized), GREETING_WORDS)


def is_confirmation(text: str, has_context: bool = True) -> bool:
    """Short yes-style reply. Only meaningful when there is something to confirm."""
    if not has_context:
        return False
    normalized = normalize_text(text).strip(" .!?,;")
    if not normalized or len(normalized) >= 25:
        return False
    return _only_words(_words(normalized), CONFIRMATION_WORDS)


def is_store_info_request(text: str) -> bool:
    return match_any_keyword(text or "", STORE_INFO_KEYWORDS)


def mentions_vehicle(text: str) -> bool:
    return match_any_keyword(text or "", VEHICLE_VOCABULARY)


def is_out_of_scope(text: str) -> bool:
    """Off-topic wording with nothing vehicle-related alongside it."""
    if not match_any_keyword(text or "", OUT_OF_SCOPE_KEYWORDS):
        return False
    return not mentions_vehicle(text)


def infer_user_intent(text: str) -> str:
    """Coarse intent for stage inference: negotiate, visit, compare, browse or idle."""
    if not text or is_system_message(text):
        return "idle"
    for intent, keywords in INTENT_KEYWORDS.items():
        if match_any_keyword(text, keywords):
            return intent
    return "idle"
