"""
Defaults Mode
Give never-calculated listings placeholder scores for their type.
No oracle calls.
"""
from ecotrust.database import TrustDB
from ecotrust.stores import ScoreMetadataStore


def initialize_defaults_mode(db_path: str, verbose: bool = False) -> int:
    """
    Write default scores to every never-calculated listing.

    Returns:
        Number of listings initialized
    """
    print(f"[*] Initialize default scores")
    print(f"   Database: {db_path}")
    print()

    initialized = 0
    with TrustDB(db_path) as db:
        store = ScoreMetadataStore(db)
        for listing in store.list_listings():
            if not listing.score_metadata.never_calculated:
                continue
            if store.initialize_defaults(listing.id):
                initialized += 1
                if verbose:
                    print(f"   {listing.id} ({listing.listing_type})")

    print(f"\n[OK] Initialized {initialized} listings")
    return initialized
