"""
Grouped queries: group_by followed by per-group ordering and aggregates.
Run: python examples/movies_groupby.py
"""

import asyncio
import json
import os
import sys
import tempfile
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from data_collection import DataCollection, chain, decode_literals, parse_dates


MOVIES = [
    {"id": 1, "title": "Heat", "genre": "crime", "rating": 8.3, "release": "1995-12-15", "cast": "['Pacino', 'De Niro']"},
    {"id": 2, "title": "Alien", "genre": "horror", "rating": 8.5, "release": "1979-05-25", "cast": "['Weaver']"},
    {"id": 3, "title": "Fargo", "genre": "crime", "rating": 8.1, "release": "1996-03-08", "cast": "['McDormand']"},
    {"id": 4, "title": "Arrival", "genre": "drama", "rating": 7.9, "release": "2016-11-11", "cast": "['Adams']"},
    {"id": 5, "title": "Casino", "genre": "crime", "rating": 8.2, "release": "1995-11-22", "cast": "['De Niro']"},
]


async def main(path):
    # A worker thread can take the normalizer as a plain callable
    collection = DataCollection(resource_location=path, worker_mode="thread",
                                normalizer=chain(decode_literals("cast"), parse_dates("release")))
    collection.on_init(lambda size: print("Ready with", size, "records"))
    async with collection:
        print("Average rating per genre:", await collection.group_by("genre").avg("rating").result())
        print("Movies per genre sum of ids:", await collection.group_by("genre").sum("id").result())

        newest = await collection.group_by("genre").sort_by("-release").range(0, 1).result()
        for genre, movies in newest.items():
            print(genre, "->", movies[0]["title"], movies[0]["release"].date(), movies[0]["cast"])


if __name__ == "__main__":
    with tempfile.TemporaryDirectory() as tmp:
        dataset = os.path.join(tmp, "movies.json")
        with open(dataset, "w") as f:
            json.dump(MOVIES, f)
        asyncio.run(main(dataset))
