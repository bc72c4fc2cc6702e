"""Generated lobby/game names and round prompts."""

from __future__ import annotations

import random

ADJECTIVES: tuple[str, ...] = (
    "Amber",
    "Brave",
    "Clever",
    "Dapper",
    "Electric",
    "Fuzzy",
    "Gentle",
    "Hidden",
    "Jolly",
    "Lucky",
    "Mighty",
    "Nimble",
    "Quiet",
    "Rusty",
    "Sleepy",
    "Velvet",
)

NOUNS: tuple[str, ...] = (
    "Badger",
    "Comet",
    "Falcon",
    "Harbor",
    "Lantern",
    "Meadow",
    "Otter",
    "Pepper",
    "Quarry",
    "Raccoon",
    "Sparrow",
    "Thicket",
    "Walrus",
    "Zephyr",
)

PROMPTS: tuple[str, ...] = (
    "The worst possible name for a pet goldfish.",
    "A terrible slogan for a dentist's office.",
    "What the cat is actually thinking right now.",
    "The least helpful thing to say at a wedding.",
    "A new holiday nobody asked for.",
    "The real reason the dinosaurs went extinct.",
    "A rejected flavor of ice cream.",
    "Something you should never whisper to a stranger.",
    "The title of a very boring superhero movie.",
    "An unexpected item to find in a time capsule.",
    "The first rule of the secret society of grandmas.",
    "A terrible thing to yell during a quiet exam.",
)


def generate_name(rng: random.Random | None = None) -> str:
    """Return an "<Adjective> <Noun>" name."""
    rng = rng or random.Random()
    return f"{rng.choice(ADJECTIVES)} {rng.choice(NOUNS)}"


def pick_prompts(count: int, rng: random.Random | None = None) -> list[str]:
    """Pick *count* prompts, without repeats until the pool runs out."""
    rng = rng or random.Random()
    picked: list[str] = []
    while len(picked) < count:
        pool = list(PROMPTS)
        rng.shuffle(pool)
        picked.extend(pool[: count - len(picked)])
    return picked
