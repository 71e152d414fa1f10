"""
Seed data for the streaming service catalog.

Patterns are matched against normalized merchant names, so case and
punctuation here do not matter. Very short patterns are left out because
they match unrelated merchants ("max" inside "maxwell", "sho" inside "shopify").
"""
import logging
from decimal import Decimal
from typing import List, Tuple

from sqlalchemy.orm import Session

from subtracker.models import StreamingService

logger = logging.getLogger(__name__)


# (name, base_price, merchant_patterns)
CATALOG_SERVICES: List[Tuple[str, str, List[str]]] = [
    # Video streaming
    ("Netflix", "15.49", ["NETFLIX", "Netflix.com", "NETFLIX.COM"]),
    ("Hulu", "7.99", ["HULU", "Hulu.com", "HULU.COM"]),
    ("Disney+", "7.99", ["DISNEY", "DisneyPlus", "DISNEY+", "DISNEYPLUS"]),
    ("HBO Max", "15.99", ["HBO", "HBO MAX", "HBOMAX"]),
    ("Amazon Prime Video", "8.99", ["AMAZON", "PRIME VIDEO", "PRIMEVIDEO", "AMZ*Prime Video"]),
    ("Apple TV+", "6.99", ["APPLE", "Apple TV", "APPLETV", "APPLE TV+"]),
    ("Peacock", "5.99", ["PEACOCK", "NBCUniversal", "NBC PEACOCK"]),
    ("Paramount+", "5.99", ["PARAMOUNT", "PARAMOUNT+", "PARAMOUNTPLUS", "CBS"]),
    ("ESPN+", "10.99", ["ESPN", "ESPN+", "ESPNPLUS"]),
    ("Discovery+", "4.99", ["DISCOVERY", "DISCOVERY+", "DISCOVERYPLUS"]),
    ("AMC+", "8.99", ["AMC", "AMC+", "AMCPLUS"]),
    ("Starz", "8.99", ["STARZ", "STARZ.COM"]),
    ("Showtime", "10.99", ["SHOWTIME", "SHOWTIME ANYTIME"]),
    ("Crunchyroll", "7.99", ["CRUNCHYROLL", "CRUNCHYROLL.COM"]),
    # Music streaming
    ("Spotify", "10.99", ["SPOTIFY", "SPOTIFY.COM", "SPOTIFY PREMIUM"]),
    ("Apple Music", "10.99", ["APPLE MUSIC", "APPLEMUSIC", "APPLE.COM/BILL"]),
    ("YouTube Premium", "13.99", ["YOUTUBE", "YOUTUBE PREMIUM", "GOOGLE*YouTube Premium"]),
    # Gaming
    ("Xbox Game Pass", "16.99", ["XBOX", "XBOX GAME PASS", "MICROSOFT*Xbox", "MS*Xbox"]),
    ("PlayStation Plus", "9.99", ["PLAYSTATION", "PS PLUS", "SONY*PlayStation Plus", "PSN"]),
    ("Nintendo Switch Online", "3.99", ["NINTENDO", "NINTENDO ONLINE", "NINTENDO SWITCH"]),
]


def seed_catalog(db: Session) -> Tuple[int, int]:
    """
    Insert missing catalog services and refresh price and patterns of existing ones.

    Returns:
        (created, updated)
    """
    existing = {service.name: service for service in db.query(StreamingService).all()}
    created = updated = 0

    for name, base_price, patterns in CATALOG_SERVICES:
        price = Decimal(base_price)
        service = existing.get(name)
        if service is None:
            db.add(StreamingService(name=name, base_price=price, merchant_patterns=list(patterns)))
            created += 1
        elif service.base_price != price or list(service.merchant_patterns or []) != patterns:
            service.base_price = price
            service.merchant_patterns = list(patterns)
            updated += 1

    db.commit()
    logger.info(f"[CATALOG] Seeded catalog: {created} created, {updated} updated")
    return created, updated
