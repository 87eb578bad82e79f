from typing import Any, Optional, Tuple

import pygtrie


def offset_add(slice_idx: Optional[int], offset: int, end: int):
    if slice_idx is None:
        return end
    if slice_idx < 0:
        return max(end + slice_idx, offset)

    return min(slice_idx + offset, end)


class StringSlice:
    """ Read-only view of string[offset:end], without copying.
    Lets pygtrie look up a prefix at any position of the source text. """

    def __init__(self, string: str, offset: int, end: Optional[int] = None):
        if end is None:
            end = len(string)
        if not 0 <= offset <= end <= len(string):
            raise IndexError("out of bounds StringSlice constructor")

        self.string = string
        self.offset = offset
        self.end = end
        self.len = end - offset

    def __getitem__(self, item):
        if isinstance(item, int):
            if item < 0:
                item += self.len
            if not 0 <= item < self.len:
                raise IndexError("StringSlice index out of range")
            return self.string[self.offset + item]
        elif isinstance(item, slice):
            start = offset_add(item.start or 0, self.offset, self.end)
            stop = offset_add(item.stop, self.offset, self.end)
            return self.string[start:stop:item.step]
        else:
            raise TypeError(f"unhandled StringSlice index {type(item)}")

    def __len__(self):
        return self.len


def longest_prefix(
        trie: pygtrie.CharTrie, string: str, offset: int, end: Optional[int] = None
) -> Optional[Tuple[str, Any]]:
    """ Returns (key, value) of the longest trie key starting at string[offset],
    or None if no key matches. """
    step = trie.longest_prefix(StringSlice(string, offset, end))
    if not step:
        return None
    return step.key, step.value
