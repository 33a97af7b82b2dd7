"""
Set operations over doc-id ordered lists.

Every function here assumes its inputs are sorted ascending and free of duplicates,
which is what `Shard.lookup` hands out. Outputs keep the same guarantees.
"""

import bisect
import heapq

# lists this many times longer than the driving list are searched, not scanned
GALLOP_THRESHOLD = 8


def gallop(doc_ids, target: int, lo: int = 0) -> int:
    """First index >= `lo` whose value is >= `target` (exponential search, then bisect)"""
    n = len(doc_ids)
    if lo >= n or doc_ids[lo] >= target:
        return lo

    step = 1
    hi = lo + 1
    while hi < n and doc_ids[hi] < target:
        lo = hi
        step *= 2
        hi = lo + step

    return bisect.bisect_left(doc_ids, target, lo + 1, min(hi, n))


def intersect(doc_id_lists) -> list[int]:
    """
    k-way intersection driven by the shortest list. The result can never be longer
    than that list, so work is O(smallest) when the others are galloped over and
    O(sum of lengths) in the worst case.
    """
    doc_id_lists = sorted(doc_id_lists, key=len)
    if not doc_id_lists or not doc_id_lists[0]:
        return []

    smallest, others = doc_id_lists[0], doc_id_lists[1:]
    use_gallop = [len(other) > GALLOP_THRESHOLD * len(smallest) for other in others]
    pointers = [0] * len(others)

    result = []
    for doc_id in smallest:
        matched = True
        for i, other in enumerate(others):
            p = pointers[i]
            if use_gallop[i]:
                p = gallop(other, doc_id, p)
            else:
                while p < len(other) and other[p] < doc_id:
                    p += 1
            pointers[i] = p

            if p == len(other):
                return result
            if other[p] != doc_id:
                matched = False
                break

        if matched:
            result.append(doc_id)

    return result


def union(doc_id_lists) -> list[int]:
    """k-way union through a min-heap keyed by doc id, equal ids are emitted once"""
    heap = [(doc_ids[0], idx, 0) for idx, doc_ids in enumerate(doc_id_lists) if doc_ids]
    heapq.heapify(heap)

    result = []
    while heap:
        doc_id, idx, pos = heapq.heappop(heap)
        if not result or result[-1] != doc_id:
            result.append(doc_id)

        pos += 1
        if pos < len(doc_id_lists[idx]):
            heapq.heappush(heap, (doc_id_lists[idx][pos], idx, pos))

    return result


def difference(doc_ids, excluded) -> list[int]:
    """`doc_ids` minus `excluded`"""
    result = []
    j = 0
    for doc_id in doc_ids:
        while j < len(excluded) and excluded[j] < doc_id:
            j += 1
        if j < len(excluded) and excluded[j] == doc_id:
            continue
        result.append(doc_id)

    return result


def top_k(scores, k: int) -> list[tuple[float, int]]:
    """
    Highest `k` (score, doc_id) pairs, best first. A bounded min-heap avoids sorting
    the whole result set; ties go to the lower doc id.
    """
    if k <= 0:
        return []

    heap: list[tuple[float, int]] = []
    for doc_id, score in scores:
        item = (score, -doc_id)
        if len(heap) < k:
            heapq.heappush(heap, item)
        elif item > heap[0]:
            heapq.heappushpop(heap, item)

    return [(score, -neg_doc_id) for score, neg_doc_id in sorted(heap, reverse=True)]
