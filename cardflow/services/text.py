from typing import Iterable, List, Optional

import bleach


def clean_text(value: Optional[str], max_length: Optional[int] = None) -> str:
    value = bleach.clean((value or '').strip(), tags=set(), strip=True)
    if max_length is not None:
        value = value[:max_length]
    return value


def clean_list(values: Optional[Iterable[str]]) -> List[str]:
    return [v for v in (clean_text(x, 255) for x in (values or [])) if v]
