"""Default storage layout seeded into a fresh store.

Areas and sections follow the factory stowage plan of a Boréal 47.2. Names are
user-facing seed data and stay in the application's default language.
"""

from logbook.migrations.engine import MigrationTransaction

# (name, icon, color) in display order
STORAGE_AREAS: list[tuple[str, str, str]] = [
    ("Bugkabine", "Bed", "slate"),
    ("Head Bug", "Droplets", "blue"),
    ("Salon", "Box", "amber"),
    ("Pantry", "UtensilsCrossed", "orange"),
    ("Steuerstand", "Compass", "green"),
    ("Maschinenraum", "Settings2", "red"),
    ("Achterkabine BB", "Bed", "pink"),
    ("Achterkabine SB", "Bed", "purple"),
    ("Head SB", "Droplets", "teal"),
    ("Cockpit", "Wind", "indigo"),
    ("Lazarett", "Package", "slate"),
    ("Vorschiff", "Anchor", "blue"),
]

# Section names per area, keyed by area name
STORAGE_SECTIONS: dict[str, list[str]] = {
    "Bugkabine": ["Koje (Gasdruckstütze)", "Schrank BB", "Schrank SB", "Bilge"],
    "Head Bug": ["Spiegelschrank", "Dusche", "Ablage"],
    "Salon": ["Sitzbank BB", "Sitzbank SB", "Schrank achtern BB", "Schrank achtern SB", "Bilge"],
    "Pantry": ["Oberschrank", "Unterschrank", "Kühlschrank", "Gasflaschen", "Bilge"],
    "Steuerstand": ["Kartentisch-Schubladen", "Navigationsschrank", "E-Schrank", "Bilge"],
    "Maschinenraum": ["Ersatzteile", "Werkzeug-Board", "Bilge"],
    "Achterkabine BB": ["Koje", "Schrank", "Badezimmer", "Bilge"],
    "Achterkabine SB": ["Koje / Tiefkühler", "Schrank", "Bilge"],
    "Head SB": ["Spiegelschrank", "Ablage"],
    "Cockpit": ["Backskiste BB", "Backskiste SB (Rettungsinsel)"],
    "Lazarett": ["Lazarett BB", "Lazarett SB"],
    "Vorschiff": ["Segelschacht", "Ankerkasten", "Bugstauraum"],
}


def seed_storage_layout(tx: MigrationTransaction) -> None:
    """Insert the default areas and their sections."""
    area_ids = tx.bulk_add(
        "storage_areas",
        [
            {"name": name, "icon": icon, "color": color, "order": order}
            for order, (name, icon, color) in enumerate(STORAGE_AREAS, start=1)
        ],
    )
    sections = []
    for area_id, (area_name, _, _) in zip(area_ids, STORAGE_AREAS):
        for order, name in enumerate(STORAGE_SECTIONS[area_name], start=1):
            sections.append({"area_id": area_id, "name": name, "order": order})
    tx.bulk_add("storage_sections", sections)
