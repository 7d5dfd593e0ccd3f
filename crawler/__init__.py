"""
Design
======

The crawler reads paginated listings from the Civitai API and keeps a local
copy of everything it has seen.

General goals:

* All state is stored in the database and visible for reporting. A Run's URL,
  including its pagination cursor, is the whole checkpoint needed to resume it
* Celery tasks are ephemeral and may be retried at any point, so every write is
  either insert-if-absent or keyed by the upstream id and re-running a page
  converges to the same state
* Only one crawl worker runs at a time. Crawler tasks are routed to their own
  queue which is served by a single-process worker, which keeps us under the
  upstream rate limits and means Run state changes never race

The crawl works like this:

1. An operator creates a Run for a listing URL (images of a model, a model
   version, a user, a post or the top of a period) with a target item count.
   Creating the Run queues a crawl worker task.
2. The worker claims the pending Run with the highest priority and marks it
   in_progress.
3. It fetches one page of the Run's URL. Every item on the page is stored
   verbatim as an EntitySnapshot, unless a snapshot for that upstream id
   already exists.
4. The snapshots are ingested: each payload is validated, the model references
   are extracted from the image metadata and an Image record is created unless
   one already exists for that image id. The snapshot is then linked to the
   Image it produced. A payload that fails validation stays stored but
   unlinked until it is reprocessed.
5. Newly created images are sent to the asset worker, which copies the files
   into object storage and reports back through the storage callback view.
6. The Run's cursor and item count are updated. It is completed when the
   target is reached, the page was empty or there is no next cursor, and
   otherwise returned to pending.
7. The worker queues another worker task, which stops once nothing is pending.

Transient errors fetching a page are retried by Celery with a quadratic
backoff while the Run stays in_progress. When the retries are exhausted, or
for any other error, the Run is marked failed and stays that way until it is
reactivated by hand.

If a worker dies mid-page its Run stays in_progress. With late acks the
broker delivers the task again under the same task id, and it resumes the
Run it had claimed. A Run that nothing has touched for
CRAWLER_STALE_RUN_SECONDS is taken over by the next worker like a pending one.
"""
