"""Subtitle assembly: noise filtering and ordering of transcript segments."""

from collections.abc import Callable, Iterable

from autoshorts.config import FILLER_MAX_LENGTH, FILLER_TOKENS
from autoshorts.models import SubtitleTrack, TranscriptSegment
from autoshorts.utils import logger

NoisePredicate = Callable[[TranscriptSegment], bool]


class FillerNoiseFilter:
    """Flags segments whose text is only a short run of filler characters.

    These come from silence or chunk boundaries being recognized as speech,
    e.g. a lone '어'. The token set is language-specific; pass another one
    for languages other than Korean.
    """

    def __init__(
        self,
        tokens: Iterable[str] = FILLER_TOKENS,
        max_length: int = FILLER_MAX_LENGTH,
    ):
        self.tokens = frozenset(tokens)
        self.max_length = max_length

    def __call__(self, segment: TranscriptSegment) -> bool:
        text = segment.text.strip()
        if not text:
            return True
        if len(text) > self.max_length:
            return False
        return all(ch in self.tokens or ch.isspace() for ch in text)


DEFAULT_NOISE_FILTER = FillerNoiseFilter()


def drop_noise(
    segments: Iterable[TranscriptSegment],
    noise_filter: NoisePredicate = DEFAULT_NOISE_FILTER,
) -> list[TranscriptSegment]:
    kept = []
    for seg in segments:
        if noise_filter(seg):
            logger.debug(
                "  Dropped noise segment %r (%.2fs-%.2fs)", seg.text, seg.start, seg.end
            )
            continue
        kept.append(seg)
    return kept


def assemble(
    raw_segments: Iterable[TranscriptSegment],
    *,
    noise_filter: NoisePredicate | None = None,
    source: str = "",
) -> SubtitleTrack:
    """Build the final subtitle track from offset-corrected segments.

    Noise segments are dropped and text is trimmed; times are left exactly
    as the provider adapter produced them. Input is expected in start
    order already; an out-of-order list is re-sorted (stable) with a warning.
    """
    segments = drop_noise(raw_segments, noise_filter or DEFAULT_NOISE_FILTER)
    segments = [
        seg if seg.text == seg.text.strip()
        else TranscriptSegment(seg.start, seg.end, seg.text.strip())
        for seg in segments
    ]

    out_of_order = any(
        later.start < earlier.start for earlier, later in zip(segments, segments[1:])
    )
    if out_of_order:
        logger.warning("Segments arrived out of order, re-sorting by start time")
        segments.sort(key=lambda seg: seg.start)

    logger.info("Assembled %d subtitle segments", len(segments))
    return SubtitleTrack(segments=tuple(segments), source=source)
