"""
Basic DataCollection usage: filters, ordering, paging and set algebra.
Run: python examples/movies_basic.py
"""

import asyncio
import json
import os
import sys
import tempfile
# Ensure project root is on sys.path for direct execution
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from data_collection import DataCollection


MOVIES = [
    {"id": 1, "title": "Heat", "year": 1995, "genre": "crime", "rating": 8.3},
    {"id": 2, "title": "Alien", "year": 1979, "genre": "horror", "rating": 8.5},
    {"id": 3, "title": "Fargo", "year": 1996, "genre": "crime", "rating": 8.1},
    {"id": 4, "title": "Arrival", "year": 2016, "genre": "drama", "rating": 7.9},
    {"id": 5, "title": "Casino", "year": 1995, "genre": "crime", "rating": 8.2},
    {"id": 6, "title": "The Thing", "year": 1982, "genre": "horror", "rating": 8.2},
]


async def main(path):
    async with DataCollection(resource_location=path) as movies:
        print("Loaded:", movies.size, "movies")

        nineties = movies.between("year", 1990, 1999).all("-rating")
        print("Explain:", nineties.explain())
        for movie in await nineties.result():
            print(movie["year"], movie["title"], movie["rating"])

        print("Crime (case-insensitive):",
              [m["title"] for m in await movies.equals("genre", "CRIME").result()])
        print("Titles starting with A:",
              [m["title"] for m in await movies.matching("title", r"^A").result()])
        print("Key 6:", (await movies.with_key(6).result())["title"])

        # Union keyed on id, then the complement against the whole dataset
        old_or_horror = movies.between("year", 0, 1985).or_(movies.equals("genre", "horror"))
        print("Not old or horror:", [m["title"] for m in await old_or_horror.invert().result()])

        top_two = await movies.all(["-rating", "title"]).range(0, 2).result()
        print("Top two:", [m["title"] for m in top_two])


if __name__ == "__main__":
    with tempfile.TemporaryDirectory() as tmp:
        dataset = os.path.join(tmp, "movies.json")
        with open(dataset, "w") as f:
            json.dump(MOVIES, f)
        asyncio.run(main(dataset))
