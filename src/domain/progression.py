"""Verification tiers and the seed/achievement catalogs they unlock."""

from pydantic import BaseModel, Field


class Tier(BaseModel):
    """One row of the verified-score table. ``max_score`` None means unbounded."""

    min_score: int = Field(..., ge=0)
    max_score: int | None = Field(default=None, description="Exclusive upper bound")
    level: int = Field(..., ge=1)
    seeds: tuple[str, ...] = ()
    achievements: tuple[str, ...] = ()

    def contains(self, score: int) -> bool:
        return score >= self.min_score and (self.max_score is None or score < self.max_score)


FOLLOWER_TIERS: tuple[Tier, ...] = (
    Tier(min_score=0, max_score=100, level=1),
    Tier(min_score=100, max_score=500, level=2, seeds=("silver_seed",), achievements=("social_sprout",)),
    Tier(min_score=500, max_score=1000, level=3, seeds=("silver_seed",), achievements=("social_sprout",)),
    Tier(
        min_score=1000,
        max_score=5000,
        level=4,
        seeds=("silver_seed", "gold_seed"),
        achievements=("social_sprout", "community_bloom"),
    ),
    Tier(
        min_score=5000,
        max_score=10000,
        level=5,
        seeds=("silver_seed", "gold_seed"),
        achievements=("social_sprout", "community_bloom"),
    ),
    Tier(
        min_score=10000,
        max_score=50000,
        level=6,
        seeds=("silver_seed", "gold_seed", "diamond_seed"),
        achievements=("social_sprout", "community_bloom", "garden_influencer"),
    ),
    Tier(
        min_score=50000,
        max_score=100000,
        level=7,
        seeds=("silver_seed", "gold_seed", "diamond_seed"),
        achievements=("social_sprout", "community_bloom", "garden_influencer"),
    ),
    Tier(
        min_score=100000,
        max_score=None,
        level=8,
        seeds=("silver_seed", "gold_seed", "diamond_seed", "legendary_seed"),
        achievements=("social_sprout", "community_bloom", "garden_influencer", "social_legend"),
    ),
)


def tier_for_score(score: int) -> Tier:
    """Map a non-negative verified score to exactly one tier."""
    if score < 0:
        raise ValueError(f"Verified score cannot be negative: {score}")
    for tier in FOLLOWER_TIERS:
        if tier.contains(score):
            return tier
    # Unreachable while the table starts at 0 and ends unbounded
    raise ValueError(f"No tier covers score {score}")


class SeedType(BaseModel):
    """Catalog entry for an unlockable seed."""

    name: str
    emoji: str
    rarity: str


SEED_TYPES: dict[str, SeedType] = {
    "basic": SeedType(name="Basic Seeds", emoji="🌱", rarity="common"),
    "silver_seed": SeedType(name="Silver Orchid", emoji="🌺", rarity="uncommon"),
    "gold_seed": SeedType(name="Golden Rose", emoji="🌹", rarity="rare"),
    "diamond_seed": SeedType(name="Diamond Lotus", emoji="💎", rarity="epic"),
    "legendary_seed": SeedType(name="Legendary Tree", emoji="🌳", rarity="legendary"),
}


class AchievementDefinition(BaseModel):
    """Catalog entry for an achievement granted by verification."""

    name: str
    description: str
    icon: str


VERIFICATION_ACHIEVEMENTS: dict[str, AchievementDefinition] = {
    "social_sprout": AchievementDefinition(
        name="Social Sprout", description="Verified 100+ followers", icon="🌱"
    ),
    "community_bloom": AchievementDefinition(
        name="Community Bloom", description="Verified 1,000+ followers", icon="🌸"
    ),
    "garden_influencer": AchievementDefinition(
        name="Garden Influencer", description="Verified 10,000+ followers", icon="🌟"
    ),
    "social_legend": AchievementDefinition(
        name="Social Legend", description="Verified 100,000+ followers", icon="👑"
    ),
}
