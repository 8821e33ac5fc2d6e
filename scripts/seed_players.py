"""Seed demo players with tennis profiles around a city centre."""
import argparse
import asyncio
import random
import sys
from datetime import date, timedelta
sys.path.insert(0, ".")

from sqlalchemy import select
from app.database import async_session_factory, utcnow
from app.models.user import PlayerProfile, User

STYLES = ["aggressive", "defensive", "all-court"]
FREQUENCIES = ["casual", "regular", "competitive"]
PLAY_TYPES = ["singles", "doubles", "rally"]
TIMES = ["morning", "afternoon", "evening", "weekend_morning", "weekend_evening"]


def _player(index: int, rng: random.Random, lat: float, lon: float) -> tuple[dict, dict]:
    user = {
        "email": f"player{index:03d}@courtside.test",
        "display_name": f"Player {index:03d}",
        "last_login_at": utcnow() - timedelta(hours=rng.randint(0, 24 * 30)),
    }
    profile = {
        "ntrp_level": rng.choice([2.5, 3.0, 3.5, 4.0, 4.5, 5.0]),
        "playing_style": rng.choice(STYLES),
        "playing_frequency": rng.choice(FREQUENCIES),
        "play_types": rng.sample(PLAY_TYPES, k=rng.randint(1, 2)),
        "preferred_times": rng.sample(TIMES, k=rng.randint(1, 3)),
        # ~0.1 degree of jitter, roughly 10 km
        "latitude": lat + rng.uniform(-0.1, 0.1),
        "longitude": lon + rng.uniform(-0.1, 0.1),
        "location_privacy": rng.random() < 0.1,
        "gender": rng.choice(["male", "female"]),
        "birth_date": date(rng.randint(1970, 2005), rng.randint(1, 12), rng.randint(1, 28)),
        "max_travel_distance_km": rng.choice([5, 10, 20]),
    }
    return user, profile


async def seed(count: int, lat: float, lon: float, seed_value: int) -> None:
    rng = random.Random(seed_value)
    async with async_session_factory() as session:
        for index in range(1, count + 1):
            user_data, profile_data = _player(index, rng, lat, lon)
            existing = await session.execute(
                select(User).where(User.email == user_data["email"])
            )
            if existing.scalar_one_or_none() is not None:
                print(f"  {user_data['email']} already exists, skipping.")
                continue
            user = User(**user_data)
            session.add(user)
            await session.flush()
            session.add(PlayerProfile(user_id=user.id, **profile_data))
            print(f"  Seeded {user_data['display_name']} (NTRP {profile_data['ntrp_level']})")
        await session.commit()
    print("Done seeding players.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed demo players.")
    parser.add_argument("--count", "-n", type=int, default=50)
    parser.add_argument("--lat", type=float, default=37.5665)
    parser.add_argument("--lon", type=float, default=126.9780)
    parser.add_argument("--seed", type=int, default=7)
    args = parser.parse_args()
    asyncio.run(seed(args.count, args.lat, args.lon, args.seed))
