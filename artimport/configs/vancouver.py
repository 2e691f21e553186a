VANCOUVER_IMPORT_CONFIG = {
    "name": "Vancouver_Public_Art_Import",
    "debug": True,
    "importer": "vancouver",
    "options": {
        "threshold": 0.7,
        "search_radius_meters": 100,
        "tie_band_width": 0.05,
        "max_consecutive_errors": 3,
        "location_enhancement": False,
        "weights": {
            "title": 0.2,
            "artist": 0.2,
            "location": 0.3,
            "per_tag": 0.05,
            "location_decay_meters": 50,
        },
    },
    "api": {
        "base_url": "https://art-api.abluestar.com",
    },
}
