OSM_IMPORT_CONFIG = {
    "name": "OSM_Artwork_Import",
    "debug": True,
    "importer": "osm",
    "options": {
        "threshold": 0.7,
        "search_radius_meters": 100,
        "tie_band_width": 0.05,
        "max_consecutive_errors": 3,
        # OSM exports have no photos and sparse tags; geocode to fill place names
        "location_enhancement": True,
    },
    "api": {
        "base_url": "https://api.publicartregistry.com",
    },
}

# Same run, nothing written anywhere
OSM_DRY_RUN_CONFIG = {
    **OSM_IMPORT_CONFIG,
    "name": "OSM_Artwork_Import_DryRun",
    "options": {**OSM_IMPORT_CONFIG["options"], "dry_run": True, "location_enhancement": False},
}
