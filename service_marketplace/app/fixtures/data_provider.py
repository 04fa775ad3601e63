"""
Reference data and random value helpers for the demo data set.
"""

import random
import re
import unicodedata
from decimal import Decimal
from typing import List

from ..domain.models import ClientType, PartnerType, PhoneType


COMPANY_STATUS = ["E.U.R.L", "S.A", "S.A.R.L", "S.A.S", "S.A.S.U", "S.C.O.P"]

PARTNER_COMPANY_DEPARTMENTS = ["business", "contact", "direction", "information", "prestataire"]

# Partner count per partner type (40 partners)
PARTNER_SERIES = [
    (PartnerType.STORE, 14),
    (PartnerType.SPECIALIST, 13),
    (PartnerType.ONLINE, 13),
]

PHONE_BRAND_LABEL = "Smartphone de la marque"
PHONE_MODEL_LABEL = "Modèle avec référence"

PHONE_COLORS = ["Doré", "Gris", "Noir", "Beige", "Blanc", "Rouge", "Mauve", "Bleu"]

PHONE_DESCRIPTIONS = [
    "révolutionne votre expérience de la vitesse et de la puissance",
    "intègre une puce plus puissante et plus intelligente",
    "permet un affichage et des prises de vue qui sont reconnues comme incroyables",
    "propose une des technologies les mieux équilibrées du marché",
    "combine toutes les dernières technologies disponibles avec un design innovant",
    "redéfinit l'expérience mobile, la photographie et la vidéographie",
    "possède un design moderne avec un écran immersif de qualité",
    "répond aux besoins des utilisateurs à tout moment et en tout lieu",
    "séduit par un design à la fois solide et élégant qui convient à toute circonstance",
    "offre une expérience photo et vidéo époustouflante avec un grand degré de performance",
    "capture chaque instant pour les partager de la même façon que vous les vivez",
    "conviendra à tous quel que soit l'usage de votre téléphone portable",
    "demeure simple d'utilisation, fluide et intuitif à tout moment",
    "rend l'expérience visuelle divertissante et confortable grâce à son ergonomie",
    "permet une autonomie longue durée avec de grandes capacités techniques",
    "résiste au quotidien en étant simple d'utilisation et conçu autour de la vidéo",
    "se démarque avec un design original et très soigné",
    "s'illustre en étant toujours plus innovant, avec un appareil photo grand angle",
]

# 10 brands x 4 models
PHONE_MODELS = [
    ["Xs 31", "Se 765", "r11 Lite", "Xr 97"],
    ["P40", "Y6 2019", "P3 smart 2020", "L56 Pro"],
    ["Gx S10", "GnNote 10 Lite", "Gx S20", "Ga71"],
    ["Ta72", "Fn X2 Lite", "Rn 10x Zoom", "Fd X2 Pro"],
    ["Ea L4", "Ea 10 II", "Kl-76", "Mdf 2019"],
    ["Cr-M4", "Tk-X4", "Si-w6", "V7 2020"],
    ["Fx 203", "Tm 765", "2D Lite", "Eg-42 97"],
    ["Rf 6000", "JK 70", "SQT Trekker", "Zx 845"],
    ["Hy 2019", "Min34 Lite", "Tech-XS", "VM Pro"],
    ["ATK-9 easy", "Hi-Low 57", "Pn90 2020", "XP 10 Advanced"],
]

PHONE_PRICES = [
    ["129.90", "199.90", "259.90", "299.90"],
    ["319.90", "359.90", "389.90", "419.90"],
    ["439.90", "479.90", "529.90", "589.90"],
    ["619.90", "649.90", "729.90", "759.90"],
    ["819.90", "859.90", "889.90", "929.90"],
    ["949.90", "979.90", "1029.90", "1100.90"],
    ["149.90", "279.90", "519.90", "1190.90"],
    ["239.90", "379.90", "419.90", "769.90"],
    ["449.90", "579.90", "629.90", "849.90"],
    ["749.90", "849.90", "939.90", "1169.90"],
]

PHONE_STORAGE = {
    PhoneType.LOW_PRICE: "32Go",
    PhoneType.GOOD_DEAL: "64Go",
    PhoneType.REFURBISHED: "128Go",
    PhoneType.EXCLUSIVE: "256Go",
    PhoneType.PREMIUM: "512Go",
}

LAST_NAMES = [
    "Martin", "Bernard", "Thomas", "Petit", "Robert", "Richard", "Durand", "Dubois", "Moreau",
    "Laurent", "Simon", "Michel", "Lefèvre", "Leroy", "Roux", "David", "Bertrand", "Morel",
    "Fournier", "Girard", "Bonnet", "Dupont", "Lambert", "Fontaine", "Rousseau", "Vincent",
    "Müller", "Lefebvre", "Faure", "André", "Mercier", "Blanc", "Guérin", "Boyer", "Garnier",
]

TLDS = ["fr", "com", "net", "org", "eu"]

FREE_EMAIL_DOMAINS = ["gmail.com", "yahoo.fr", "hotmail.fr", "free.fr", "orange.fr", "laposte.net"]


def sanitize(value: str, delimiter: str = "-") -> str:
    """ASCII, lower case, delimiter separated version of ``value``."""
    ascii_value = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii").lower()
    ascii_value = re.sub(r"[^a-z0-9/_|+\s-]", "", ascii_value)
    ascii_value = re.sub(r"[/_|+\s-]+", delimiter, ascii_value)
    return ascii_value.strip(delimiter)


def phone_type_for_price(price: Decimal) -> PhoneType:
    if price < Decimal("200"):
        return PhoneType.LOW_PRICE
    if price < Decimal("300"):
        return PhoneType.GOOD_DEAL
    if price < Decimal("500"):
        return PhoneType.REFURBISHED
    if price < Decimal("800"):
        return PhoneType.EXCLUSIVE
    return PhoneType.PREMIUM


class DataProvider:
    """Random but reproducible values for the demo data set."""

    def __init__(self, seed: int = 42):
        self.random = random.Random(seed)

    def unique_suffix(self) -> str:
        return "%04x" % self.random.getrandbits(16)

    def company_name(self) -> str:
        return f"{self.random.choice(LAST_NAMES)} {self.random.choice(COMPANY_STATUS)}"

    def partner_email(self, company_name: str) -> str:
        department = self.random.choice(PARTNER_COMPANY_DEPARTMENTS)
        domain = f"{sanitize(company_name)}.{self.random.choice(TLDS)}"
        return f"{department}-{self.unique_suffix()}@{domain}"

    def client_type(self) -> ClientType:
        return self.random.choice(list(ClientType))

    def client_name(self, client_type: ClientType) -> str:
        if client_type is ClientType.INDIVIDUAL:
            return self.random.choice(LAST_NAMES)
        return self.company_name()

    def client_email(self, client_name: str) -> str:
        return f"{sanitize(client_name)}-{self.unique_suffix()}@{self.random.choice(FREE_EMAIL_DOMAINS)}"

    def phone_color(self) -> str:
        return self.random.choice(PHONE_COLORS)

    def phone_description(self, element_count: int = 6) -> str:
        return ",\n".join(self.random.sample(PHONE_DESCRIPTIONS, element_count))

    def choice(self, values: List):
        return self.random.choice(values)
