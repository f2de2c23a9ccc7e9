import json
import os

GENRES = ['drama', 'comedy', 'action', 'horror']


def make_movies(count: int = 20) -> list:
    return [
        {
            'id': i,
            'title': f'movie {i:02d}',
            'year': 1990 + i,
            'genre': GENRES[i % len(GENRES)],
            'rating': (i % 5) + 1,
            'release': f'{1990 + i}-06-01T00:00:00',
            'tags': "['classic']" if i % 2 else "['new', 'indie']",
        }
        for i in range(count)
    ]


def write_dataset(directory: str, records: list = None, name: str = 'movies.json') -> str:
    path = os.path.join(directory, name)
    with open(path, 'w') as f:
        json.dump(make_movies() if records is None else records, f)
    return path
