"""AniPicks: anime recommendations from AniList favourites and ratings."""

__version__ = "1.0.0"
