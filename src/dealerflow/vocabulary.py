"""Vehicle vocabulary tables used by the slot extractor.

Everything here is data. A different market or locale ships a different
Vocabulary instance instead of a forked extractor. Keys are normalized
(lowercase, no diacritics) so they can be matched directly against
normalize_text() output.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

CAR_BRANDS = MappingProxyType({
    "ford": "FORD",
    "chevrolet": "CHEVROLET",
    "gm": "CHEVROLET",
    "volkswagen": "VOLKSWAGEN",
    "vw": "VOLKSWAGEN",
    "fiat": "FIAT",
    "toyota": "TOYOTA",
    "honda": "HONDA",
    "hyundai": "HYUNDAI",
    "jeep": "JEEP",
    "nissan": "NISSAN",
    "renault": "RENAULT",
    "peugeot": "PEUGEOT",
    "citroen": "CITROEN",
    "mitsubishi": "MITSUBISHI",
    "chery": "CAOA CHERY",
    "caoa": "CAOA CHERY",
    "caoa chery": "CAOA CHERY",
    "bmw": "BMW",
    "mercedes": "MERCEDES-BENZ",
    "mercedes-benz": "MERCEDES-BENZ",
    "audi": "AUDI",
    "kia": "KIA",
    "land rover": "LAND ROVER",
    "landrover": "LAND ROVER",
    "volvo": "VOLVO",
    "subaru": "SUBARU",
    "suzuki": "SUZUKI",
    "jac": "JAC",
    "ram": "RAM",
    "byd": "BYD",
    "gwm": "GWM",
    # Not sold here, still recognized so the agent can say so
    "tesla": "TESLA",
    "ferrari": "FERRARI",
    "lamborghini": "LAMBORGHINI",
    "porsche": "PORSCHE",
})

MODEL_TO_BRAND = MappingProxyType({
    # FORD
    "ka": "FORD", "fiesta": "FORD", "focus": "FORD", "ecosport": "FORD",
    "ranger": "FORD", "bronco": "FORD", "territory": "FORD", "maverick": "FORD",
    "fusion": "FORD", "edge": "FORD", "kuga": "FORD",
    # CHEVROLET
    "onix": "CHEVROLET", "onix plus": "CHEVROLET", "prisma": "CHEVROLET",
    "cruze": "CHEVROLET", "tracker": "CHEVROLET", "spin": "CHEVROLET",
    "s10": "CHEVROLET", "equinox": "CHEVROLET", "trailblazer": "CHEVROLET",
    "montana": "CHEVROLET", "cobalt": "CHEVROLET", "joy": "CHEVROLET",
    # HYUNDAI
    "hb20": "HYUNDAI", "hb20s": "HYUNDAI", "creta": "HYUNDAI", "tucson": "HYUNDAI",
    "santa fe": "HYUNDAI", "ix35": "HYUNDAI", "azera": "HYUNDAI", "i30": "HYUNDAI",
    "elantra": "HYUNDAI",
    # TOYOTA
    "corolla": "TOYOTA", "corolla cross": "TOYOTA", "yaris": "TOYOTA",
    "hilux": "TOYOTA", "etios": "TOYOTA", "sw4": "TOYOTA", "rav4": "TOYOTA",
    "camry": "TOYOTA", "prius": "TOYOTA",
    # VOLKSWAGEN
    "polo": "VOLKSWAGEN", "gol": "VOLKSWAGEN", "virtus": "VOLKSWAGEN",
    "t-cross": "VOLKSWAGEN", "nivus": "VOLKSWAGEN", "taos": "VOLKSWAGEN",
    "tiguan": "VOLKSWAGEN", "jetta": "VOLKSWAGEN", "amarok": "VOLKSWAGEN",
    "fusca": "VOLKSWAGEN", "golf": "VOLKSWAGEN", "voyage": "VOLKSWAGEN",
    "saveiro": "VOLKSWAGEN", "up": "VOLKSWAGEN", "fox": "VOLKSWAGEN",
    "kombi": "VOLKSWAGEN", "passat": "VOLKSWAGEN",
    # NISSAN
    "kicks": "NISSAN", "versa": "NISSAN", "sentra": "NISSAN", "frontier": "NISSAN",
    "march": "NISSAN", "livina": "NISSAN",
    # JEEP
    "renegade": "JEEP", "compass": "JEEP", "commander": "JEEP",
    "wrangler": "JEEP", "cherokee": "JEEP",
    # FIAT
    "toro": "FIAT", "argo": "FIAT", "cronos": "FIAT", "strada": "FIAT",
    "mobi": "FIAT", "pulse": "FIAT", "fastback": "FIAT", "uno": "FIAT",
    "palio": "FIAT", "siena": "FIAT",
    # HONDA
    "civic": "HONDA", "city": "HONDA", "fit": "HONDA", "hr-v": "HONDA",
    "hrv": "HONDA", "cr-v": "HONDA", "crv": "HONDA", "wr-v": "HONDA",
    "wrv": "HONDA", "accord": "HONDA",
    # RENAULT
    "sandero": "RENAULT", "logan": "RENAULT", "duster": "RENAULT",
    "captur": "RENAULT", "kwid": "RENAULT", "oroch": "RENAULT", "clio": "RENAULT",
    # CITROEN
    "c3": "CITROEN", "c4": "CITROEN", "aircross": "CITROEN",
    # PEUGEOT
    "208": "PEUGEOT", "2008": "PEUGEOT", "3008": "PEUGEOT", "308": "PEUGEOT",
    # MITSUBISHI
    "lancer": "MITSUBISHI", "outlander": "MITSUBISHI", "pajero": "MITSUBISHI",
    "l200": "MITSUBISHI", "asx": "MITSUBISHI",
    # CAOA CHERY
    "tiggo": "CAOA CHERY", "tiggo 5": "CAOA CHERY", "tiggo 5x": "CAOA CHERY",
    "tiggo 7": "CAOA CHERY", "tiggo 8": "CAOA CHERY", "arrizo": "CAOA CHERY",
    # KIA
    "sportage": "KIA", "cerato": "KIA", "seltos": "KIA", "sorento": "KIA",
    "carnival": "KIA", "picanto": "KIA",
    # RAM
    "rampage": "RAM",
    # BYD
    "dolphin": "BYD", "seal": "BYD", "song": "BYD", "yuan": "BYD",
    # GWM
    "haval": "GWM", "haval h6": "GWM",
})

# Numeric model names collide with years and prices; they only count when
# the brand is named in the same message.
BRAND_QUALIFIED_MODELS = frozenset({"208", "2008", "3008", "308"})

CATEGORY_MAP = MappingProxyType({
    "suv": "SUV",
    "hatch": "HATCH",
    "hatchback": "HATCH",
    "sedan": "SEDAN",
    "seda": "SEDAN",
    "sendan": "SEDAN",
    "semdan": "SEDAN",
    "pickup": "PICKUP",
    "picape": "PICKUP",
    "caminhonete": "PICKUP",
    "utilitario": "UTILITARIO",
    "esportivo": "ESPORTIVO",
})

COLOR_MAP = MappingProxyType({
    "branco": "BRANCA", "branca": "BRANCA",
    "preto": "PRETA", "preta": "PRETA",
    "prata": "PRATA",
    "cinza": "CINZA",
    "vermelho": "VERMELHA", "vermelha": "VERMELHA",
    "azul": "AZUL",
    "verde": "VERDE",
    "amarelo": "AMARELA", "amarela": "AMARELA",
    "bege": "BEGE",
    "marrom": "MARROM",
    "dourado": "DOURADA", "dourada": "DOURADA",
    "laranja": "LARANJA",
    "vinho": "VINHO", "bordo": "VINHO",
})

TYPO_CORRECTIONS = MappingProxyType({
    "tigo": "tiggo", "tigo 5": "tiggo 5", "tigo 5x": "tiggo 5x",
    "tiago": "tiggo", "tiago 5": "tiggo 5",
    "onics": "onix", "onyx": "onix",
    "hb 20": "hb20", "h20": "hb20",
    "t cross": "t-cross", "tcross": "t-cross",
    "compasss": "compass", "compaas": "compass",
    "renegate": "renegade", "renegad": "renegade",
    "corola": "corolla", "civc": "civic",
    "hrv": "hr-v", "crv": "cr-v", "wrv": "wr-v",
})


@dataclass(frozen=True)
class Vocabulary:
    """Lookup tables for one market."""

    brands: Mapping[str, str] = field(default_factory=lambda: CAR_BRANDS)
    models: Mapping[str, str] = field(default_factory=lambda: MODEL_TO_BRAND)
    categories: Mapping[str, str] = field(default_factory=lambda: CATEGORY_MAP)
    colors: Mapping[str, str] = field(default_factory=lambda: COLOR_MAP)
    typos: Mapping[str, str] = field(default_factory=lambda: TYPO_CORRECTIONS)
    brand_qualified: frozenset = BRAND_QUALIFIED_MODELS

    def models_by_length(self) -> list[str]:
        """Model names, longest first, so "corolla cross" is tried before "corolla"."""
        return sorted(self.models, key=len, reverse=True)

    def typos_by_length(self) -> list[str]:
        return sorted(self.typos, key=len, reverse=True)

    def brand_of(self, model: str) -> str | None:
        return self.models.get(model)


DEFAULT_VOCABULARY = Vocabulary()
