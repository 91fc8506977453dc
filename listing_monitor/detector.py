from typing import List
from .schemas import Item, Snapshot

def detect_new_items(old: Snapshot, new: Snapshot) -> List[Item]:
    """Items of `new` whose id is absent from `old`, in `new`'s order.

    Only `item_id` takes part in the comparison; price or title changes of a
    known listing are not news.
    """
    seen = {item.item_id for item in old.items}
    return [item for item in new.items if item.item_id not in seen]
