# wayback-publish

`wayback_publish` takes the results of archiving a web page and sends them to
other services. It has two parts:

- `wayback_publish.pooling` is a small thread-based worker pool. It runs jobs
  with a timeout on each attempt, a fixed number of retries and an optional
  fallback.
- `wayback_publish.publish` is the publishing layer. It keeps a registry of
  publishers and spreads every archiving result to each publisher that is set up.

The package ships these publishers:

| Module                     | Class      | Target                      |
|----------------------------|------------|-----------------------------|
| `wayback_publish.meili`    | `Meili`    | Meilisearch index           |
| `wayback_publish.omnivore` | `Omnivore` | Omnivore read-later service |
| `wayback_publish.github`   | `GitHub`   | GitHub issues               |
| `wayback_publish.mastodon` | `Mastodon` | Mastodon statuses           |
| `wayback_publish.notion`   | `Notion`   | Notion database pages       |

## Installation

```
pip install wayback-publish
```

To run the test suite, install the `test` extra and run pytest:

```
pip install "wayback-publish[test]"
pytest
```

## The worker pool

```python
import threading
from wayback_publish.pooling import Bucket, Options, Pool

pool = Pool(Options(timeout=5.0, max_retries=2, capacity=4))
threading.Thread(target=pool.roll, daemon=True).start()

pool.put(Bucket(
    request=lambda cancel: print("working"),
    fallback=lambda cancel: print("gave up"),
))
pool.close()          # waits until every queued bucket has finished
print(pool.closed())  # True
```

`Options` takes `timeout` in seconds. `max_retries` is the number of extra
attempts after the first one. `capacity` is how many requests may run at the
same time. Negative values raise `ValueError`.

A bucket's `request` and `fallback` are called with a `threading.Event`. The
pool sets this event once the attempt's deadline has passed. A request signals
failure by raising. If it does not finish in time, the attempt counts as
failed. After `n` failed attempts, the next attempt is allowed
`timeout * (1 + int(0.75 * n))` seconds. When the last attempt has failed,
the `fallback` is called.

Buckets are taken in the order they were put. `Pool.roll()` blocks until the
pool is closed. `Pool.close()` blocks until nothing is waiting or processing.
`Pool.closed(wait=3.0)` reports whether the pool is closed, waiting up to
`wait` seconds. `Pool.status()` returns `Status.IDLE` while fewer requests are
queued or running than the pool's capacity, and `Status.BUSY` otherwise.

## Publishing

Archiving results are `Collect` values. Each one holds the archive slot
(`arc`), the archived URI (`dst`), the source URI (`src`) and `ext`.
`COLLECTS` holds a ready-made example set.

Each publisher module has a `setup_module` function. It returns a `Module`, or
`None` when a required setting is missing. `meili.setup_module` also returns
`None` when the server cannot be prepared. Register a setup function with a
`Registry` under a `Flag`. The function is called with the options that are
given to `Publish`:

```python
import threading
from wayback_publish.publish import COLLECTS, Flag, Publish, Registry
from wayback_publish import meili

registry = Registry()
registry.register(
    Flag.MEILI,
    lambda options: meili.setup_module("http://localhost:7700", apikey="placeholder"),
)

service = Publish(registry, options=None, timeout=30.0, max_retries=2)
threading.Thread(target=service.start, daemon=True).start()

rdx = {"https://example.com/": {"title": "Example Domain"}}
service.spread(rdx, COLLECTS, Flag.WEB)
service.stop()
```

`Publish` builds a pool with one slot per module that was set up.
`spread(rdx, cols, source, *args)` queues one request for each module.
`stop()` shuts down every publisher, waits for the pool to go idle and then
closes it. `Registry.load(flag)` returns a module. `Registry.each()` yields
every module that has a publisher.

`rdx` is a mapping from source URI to artifact. `artifact(rdx, cols)` returns
the artifact for the first collect's source. It raises
`ArtifactNotFoundError` when there is no collect or no stored artifact.
Registering the same flag twice raises `RegistrationError`.

### Writing a publisher

Subclass `Publisher` and implement `publish(rdx, cols, *args)` and
`shutdown()`. `publish` raises on failure.

### The shipped publishers

- `Meili(endpoint, apikey="", indexing="", session=None)`. The index name
  defaults to `capsules`. `setup()` creates the index if it is missing, reads
  the server version, and makes `id` sortable. That last request uses `PUT`
  from server version 0.28 on and `POST` before. `publish` pushes one document
  per source URI, with the fields `id`, `source`, `ia`, `is`, `ip` and `ph`.
- `Omnivore(apikey, user_agent=..., session=None, endpoint=...)` saves the
  first collect's source URI through the GraphQL `saveUrl` mutation.
- `GitHub(token, owner, repo="", render=None, session=None, api_url=...)`
  opens an issue. The title comes from the artifact's `title` when there is
  one, and is "Published at <time>" otherwise.
- `Mastodon(server, client_key, client_secret, access_token, render=None,
  cw_text="", session=None)` posts a public status. The first extra argument
  to `publish` is a status ID to reply to.
- `Notion(token, database_id="", render=None, uploader=None, session=None,
  api_url=...)` creates a database page with a table of the results and
  appends the rendered HTML as blocks, in chunks. `traverse_nodes` turns
  parsed HTML into blocks. `upload_image(uploader, src)` downloads an image,
  passes the file path to `uploader`, and returns the hosted URL with
  `?orig=<src>` appended.

`render` is a callable `(cols, rdx) -> str` that builds the message body. Each
publisher has a simple default.

## Errors

Publishers raise `PublishError`, or its subclasses `MeiliError` and
`OmnivoreError`, when a request fails or a service rejects it.

## What this package does not do

There is no command-line program and no long-running server. Settings are not
read from the environment or from files: you pass credentials and endpoints to
`setup_module` or to the publisher classes yourself. Archiving itself, storage
of artifacts, and chat or social publishers other than the ones listed above
are not part of this package.