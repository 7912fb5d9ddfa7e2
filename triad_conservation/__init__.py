#!/usr/bin/env python3
"""
Copyright (c) 2025, Josh Walker

Redistribution and use in source and binary forms, with or without
modification, are permitted provided that the following conditions are met:

1. Redistributions of source code must retain the above copyright notice, this
   list of conditions and the following disclaimer.

2. Redistributions in binary form must reproduce the above copyright notice,
   this list of conditions and the following disclaimer in the documentation
   and/or other materials provided with the distribution.

THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS"
AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE
IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE ARE
DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE LIABLE
FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR CONSEQUENTIAL
DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF SUBSTITUTE GOODS OR
SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS INTERRUPTION) HOWEVER
CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN CONTRACT, STRICT LIABILITY,
OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN ANY WAY OUT OF THE USE
OF THIS SOFTWARE, EVEN IF ADVISED OF THE POSSIBILITY OF SUCH DAMAGE.

Triad Conservation Statistics for Multiple Sequence Alignments

This module scores the conservation of homologous gene triads (one gene per
subgenome) from an already computed multiple sequence alignment, typically
of promoter regions. It reports sum-of-pairs and sum-of-identities scores,
locates the longest gap-tolerant region covered by every sequence, and builds
a sliding window conservation profile anchored at the alignment end. It also
summarizes local pairwise alignments between the genes of each triad pair.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from functools import cached_property
from itertools import combinations

LOGGER = logging.getLogger(__name__)

# Alignment gap symbol (fixed)
GAP_CHAR = '-'

DEFAULT_MAX_GAP = 10          # Longest tolerated gap run inside a region
DEFAULT_WINDOW_SIZE = 100     # Sliding window width in columns
DEFAULT_WINDOW_OFFSET = 25    # Step between consecutive windows

# Long table tags for the two profiled alignments of a triad
CUT_REGION_LABEL = 'cut_longest_region'
FULL_ALIGNMENT_LABEL = 'full_promoter'

# Header rows for the external table writer, matching TriadReport.summary_row(),
# TriadReport.window_rows() and PairwiseComparison.as_row()
SUMMARY_COLUMNS = (
    'triad', 'longest_start', 'longest_length', 'total_aln_length',
    'start_from_CDS', 'end_from_CDS',
    'sum_of_pairs', 'norm_sum_of_pairs', 'sum_of_identities', 'identity',
)
WINDOW_COLUMNS = (
    'triad', 'type', 'start_from_CDS', 'end_from_cds',
    'sum_of_pairs', 'norm_sum_of_pairs', 'sum_of_identities', 'identity',
)
PAIRWISE_COLUMNS = (
    'group_id', 'query', 'subject', 'chr_query', 'chr_subject',
    'aln_type', 'length', 'pident',
)


class MalformedAlignmentError(ValueError):
    """Alignment is structurally unusable (unequal lengths, too few sequences)."""


class InvalidCharacterError(ValueError):
    """A column holds a character that is neither a letter nor the gap symbol."""

    def __init__(self, char, column=None):
        self.char = char
        self.column = column
        message = f"Invalid alignment character {char!r}"
        if column is not None:
            message += f" in column {column!r}"
        super().__init__(message)


@dataclass(frozen=True)
class ProfileParams:
    """
    Parameters for region detection and sliding window profiling.

    Attributes:
        max_gap: Longest run of not fully covered columns tolerated inside a
                 region before the run is abandoned.
        window_size: Width of each profile window in alignment columns.
        window_offset: Step between consecutive window end boundaries.
    """
    max_gap: int = DEFAULT_MAX_GAP
    window_size: int = DEFAULT_WINDOW_SIZE
    window_offset: int = DEFAULT_WINDOW_OFFSET

    def __post_init__(self):
        """Validate parameter ranges."""
        if self.max_gap < 0:
            raise ValueError(f"max_gap must be >= 0, got {self.max_gap}")
        if self.window_size < 1:
            raise ValueError(f"window_size must be >= 1, got {self.window_size}")
        if self.window_offset < 1:
            raise ValueError(f"window_offset must be >= 1, got {self.window_offset}")


DEFAULT_PROFILE_PARAMS = ProfileParams()


def pairwise_comparisons(sequence_count):
    """Number of unordered sequence pairs, k*(k-1)/2."""
    return sequence_count * (sequence_count - 1) // 2


def _check_character(char, gap_char):
    if char != gap_char and not char.isalpha():
        raise InvalidCharacterError(char)


def score_column(column, gap_char=GAP_CHAR):
    """
    Score one alignment column by comparing every pair of characters once.

    Pair (i, j) with i < j contributes to sum-of-pairs:
    - both gaps: 0
    - exactly one gap: -2
    - equal residues: +1 (also counted as an identity)
    - different residues: -1

    Two gaps are not an identity.

    Args:
        column (Sequence[str]): One character per aligned sequence, in
                                alignment name order
        gap_char (str): Gap symbol

    Returns:
        tuple: (sum_of_pairs, sum_of_identities) for the column

    Raises:
        MalformedAlignmentError: Fewer than two characters in the column
        InvalidCharacterError: A character is neither a letter nor a gap

    Examples:
        >>> score_column("AAA")
        (3, 3)
        >>> score_column("A-")
        (-2, 0)
    """
    if len(column) < 2:
        raise MalformedAlignmentError(
            f"Pairwise scoring needs at least 2 sequences, got {len(column)}")
    for char in column:
        _check_character(char, gap_char)

    sum_of_pairs = 0
    sum_of_identities = 0
    last = len(column)
    for i in range(last):
        first_char = column[i]
        for j in range(i + 1, last):
            second_char = column[j]
            if first_char == gap_char and second_char == gap_char:
                continue
            elif first_char == gap_char or second_char == gap_char:
                sum_of_pairs -= 2
            elif first_char == second_char:
                sum_of_pairs += 1
                sum_of_identities += 1
            else:
                sum_of_pairs -= 1
    return sum_of_pairs, sum_of_identities


@dataclass(frozen=True)
class AlignmentScores:
    """Aggregate conservation scores over a range of alignment columns.

    Fields:
        sum_of_pairs: Sum of column sum-of-pairs scores
        normalized_sum_of_pairs: sum_of_pairs / max_score (-2.0 to 1.0)
        sum_of_identities: Number of identical residue pairs
        identity: sum_of_identities / max_score (0.0 to 1.0)
        max_score: columns * pairwise comparisons; 0 for a degenerate range
    """
    sum_of_pairs: int
    normalized_sum_of_pairs: float
    sum_of_identities: int
    identity: float
    max_score: int = 0

    def as_row(self):
        return (self.sum_of_pairs, self.normalized_sum_of_pairs,
                self.sum_of_identities, self.identity)


EMPTY_SCORES = AlignmentScores(0, 0.0, 0, 0.0, 0)


@dataclass(frozen=True)
class Alignment:
    """
    Immutable multiple sequence alignment.

    Names are ordered once at construction and that order is reused for every
    column, so pair enumeration is stable. Aggregate scores are computed on
    first access and cached on the instance.

    Fields:
        names: Sequence names, unique
        sequences: Aligned sequences in the same order as names, equal length
        gap_char: Gap symbol
    """
    names: tuple
    sequences: tuple
    gap_char: str = field(default=GAP_CHAR, repr=False)

    def __post_init__(self):
        """Validate the alignment shape."""
        if len(self.names) != len(self.sequences):
            raise MalformedAlignmentError(
                f"Got {len(self.names)} names for {len(self.sequences)} sequences")
        if not self.names:
            raise MalformedAlignmentError("Alignment has no sequences")
        if len(set(self.names)) != len(self.names):
            raise MalformedAlignmentError(f"Duplicate sequence names: {list(self.names)}")
        for name, seq in zip(self.names, self.sequences):
            if not isinstance(seq, str):
                raise MalformedAlignmentError(
                    f"Sequence {name!r} must be a str, got {type(seq).__name__}")
        lengths = {len(seq) for seq in self.sequences}
        if len(lengths) > 1:
            detail = ', '.join(f"{name}={len(seq)}" for name, seq in zip(self.names, self.sequences))
            raise MalformedAlignmentError(f"Aligned sequences must have same length: {detail}")

    @classmethod
    def from_mapping(cls, sequences, gap_char=GAP_CHAR):
        """Build an alignment from a name -> aligned sequence mapping."""
        names = tuple(sequences)
        return cls(names, tuple(sequences[name] for name in names), gap_char)

    @classmethod
    def from_optional_mapping(cls, sequences, gap_char=GAP_CHAR):
        """
        Build an alignment, or return None when any sequence is missing.

        Triad lookups leave a gene's sequence as None when it was not found;
        such triads are skipped rather than scored.
        """
        if any(seq is None for seq in sequences.values()):
            return None
        return cls.from_mapping(sequences, gap_char)

    @cached_property
    def length(self):
        return len(self.sequences[0])

    def __len__(self):
        return self.length

    @property
    def sequence_count(self):
        return len(self.names)

    def items(self):
        return zip(self.names, self.sequences)

    def column(self, offset):
        """Characters at one column offset, in name order."""
        return tuple(seq[offset] for seq in self.sequences)

    def columns(self, start=0, end=None):
        if end is None:
            end = self.length
        for offset in range(start, end):
            yield self.column(offset)

    def cut(self, start, length):
        """
        Sub-alignment of columns [start, start + length).

        Columns past the alignment end are absent, so the result may be
        shorter than requested. A negative start (the not-found region
        sentinel) yields an empty alignment.
        """
        if start < 0 or length <= 0:
            sequences = ('',) * self.sequence_count
        else:
            sequences = tuple(seq[start:start + length] for seq in self.sequences)
        return Alignment(self.names, sequences, self.gap_char)

    @cached_property
    def scores(self):
        return score_alignment(self)

    @property
    def sum_of_pairs(self):
        return self.scores.sum_of_pairs

    @property
    def sum_of_identities(self):
        return self.scores.sum_of_identities

    @property
    def identity(self):
        return self.scores.identity

    @property
    def normalized_sum_of_pairs(self):
        return self.scores.normalized_sum_of_pairs


def score_alignment(alignment, start=0, end=None):
    """
    Sum column scores over [start, end) and normalize by the maximum score.

    max_score = columns * k*(k-1)/2 for k sequences. When max_score is 0
    (empty range or a single sequence) all scores are zero.

    Args:
        alignment (Alignment): Alignment to score
        start (int): First column, clamped to 0
        end (int, optional): Column after the last one, clamped to the
                             alignment length. Defaults to the alignment end.

    Returns:
        AlignmentScores: Aggregated scores for the range
    """
    if end is None:
        end = alignment.length
    start = max(start, 0)
    end = min(end, alignment.length)
    max_score = max(end - start, 0) * pairwise_comparisons(alignment.sequence_count)
    if max_score == 0:
        return EMPTY_SCORES

    sum_of_pairs = 0
    sum_of_identities = 0
    for offset, column in enumerate(alignment.columns(start, end), start):
        try:
            column_pairs, column_identities = score_column(column, alignment.gap_char)
        except InvalidCharacterError as e:
            raise InvalidCharacterError(e.char, offset) from None
        sum_of_pairs += column_pairs
        sum_of_identities += column_identities

    return AlignmentScores(
        sum_of_pairs=sum_of_pairs,
        normalized_sum_of_pairs=sum_of_pairs / max_score,
        sum_of_identities=sum_of_identities,
        identity=sum_of_identities / max_score,
        max_score=max_score,
    )


@dataclass(frozen=True)
class Region:
    """
    Longest gap-tolerant region of an alignment.

    start is -1 when no column is covered by every sequence; check `found`
    before using it as an offset. Offsets named *_from_CDS in reports are
    measured back from the alignment end, where the coding sequence begins
    for an upstream promoter alignment.
    """
    start: int
    length: int
    total_length: int

    @property
    def found(self):
        return self.start >= 0

    @property
    def offset_from_start(self):
        return self.start

    @property
    def offset_from_end(self):
        return self.total_length - self.start - self.length

    @property
    def start_offset(self):
        return self.offset_from_end

    @property
    def end_offset(self):
        return self.total_length - self.start

    def as_row(self):
        return (self.start, self.length, self.total_length,
                self.start_offset, self.end_offset)


def is_fully_covered(column, gap_char=GAP_CHAR):
    """True if no sequence has a gap in the column."""
    return all(char != gap_char for char in column)


def find_longest_region(alignment, max_gap=DEFAULT_MAX_GAP):
    """
    Find the longest run of fully covered columns, tolerating short gap runs.

    Columns where any sequence has a gap interrupt the run; interruptions of
    up to max_gap consecutive columns are absorbed into it, longer ones end
    it. The first run to reach a given covered-column count wins. Absorbed gap
    columns are added back to the reported length, excluding a gap run still
    open when the best run was recorded.

    Args:
        alignment (Alignment): Alignment to scan
        max_gap (int): Longest tolerated gap run

    Returns:
        Region: Best region, start=-1 if no column is fully covered

    Examples:
        >>> find_longest_region(Alignment(('a', 'b'), ('AAAA', 'AAAA')))
        Region(start=0, length=4, total_length=4)
    """
    longest_start = -1
    longest_length = 0
    longest_gaps = 0
    current_start = -1
    current_length = 0
    current_gap = 0
    gaps = 0

    for i, column in enumerate(alignment.columns()):
        if is_fully_covered(column, alignment.gap_char):
            if current_length == 0:
                current_start = i
            current_length += 1
            current_gap = 0
        else:
            gaps += 1
            current_gap += 1

        if current_length > longest_length:
            longest_length = current_length
            longest_start = current_start
            longest_gaps = gaps - current_gap

        if current_gap > max_gap:
            current_length = 0
            gaps = 0

    region = Region(longest_start, longest_length + longest_gaps, alignment.length)
    LOGGER.debug(f"Longest region {region} (max_gap={max_gap})")
    return region


@dataclass(frozen=True)
class Window:
    """One sliding window of a conservation profile.

    label_start/label_end count back from the alignment end in steps of the
    window offset; window_start/window_end are the scored columns, clipped to
    the alignment.
    """
    index: int
    label_start: int
    label_end: int
    window_start: int
    window_end: int
    scores: AlignmentScores

    def as_row(self):
        return (self.label_start, self.label_end) + self.scores.as_row()


def window_ends(length, offset):
    """
    End boundaries of the profile windows, last column first.

    Steps 0, offset, 2*offset ... up to length are shifted by length % offset
    so the largest boundary equals length, then reversed.

    Examples:
        >>> window_ends(10, 4)
        [10, 6, 2]
    """
    shift = length % offset
    return [step + shift for step in range(0, length + 1, offset)][::-1]


def window_profile(alignment, window_size=DEFAULT_WINDOW_SIZE, offset=DEFAULT_WINDOW_OFFSET):
    """
    Score fixed size windows stepping back from the alignment end.

    Window i covers columns [end_i - window_size, end_i) for the i-th
    boundary of window_ends(), and is labeled (i*offset, i*offset + window_size).
    Columns before the alignment start are absent, so windows near the start
    may be short or empty; empty windows score zero.

    Args:
        alignment (Alignment): Alignment to profile
        window_size (int): Window width in columns
        offset (int): Step between windows

    Returns:
        list[Window]: Profile, starting with the window that ends at the
                      alignment end
    """
    if window_size < 1 or offset < 1:
        raise ValueError(f"window_size and offset must be >= 1, got {window_size}, {offset}")

    profile = []
    for index, end in enumerate(window_ends(alignment.length, offset)):
        start = max(end - window_size, 0)
        window_alignment = alignment.cut(start, end - start)
        profile.append(Window(
            index=index,
            label_start=index * offset,
            label_end=index * offset + window_size,
            window_start=start,
            window_end=end,
            scores=window_alignment.scores,
        ))
    LOGGER.debug(f"Profiled {len(profile)} windows over {alignment.length} columns")
    return profile


@dataclass(frozen=True)
class TriadReport:
    """Conservation report for one triad alignment.

    Fields:
        triad: Triad identifier
        alignment: Full alignment
        region: Longest gap-tolerant region of the full alignment
        cut_alignment: Alignment restricted to the region
        params: Parameters used for region detection and profiling
    """
    triad: str
    alignment: Alignment
    region: Region
    cut_alignment: Alignment
    params: ProfileParams = DEFAULT_PROFILE_PARAMS

    def summary_row(self):
        """Row matching SUMMARY_COLUMNS; scores are those of the cut region."""
        return (self.triad,) + self.region.as_row() + self.cut_alignment.scores.as_row()

    def window_rows(self):
        """Rows matching WINDOW_COLUMNS, cut region first then full alignment."""
        rows = []
        for label, alignment in ((CUT_REGION_LABEL, self.cut_alignment),
                                 (FULL_ALIGNMENT_LABEL, self.alignment)):
            for window in window_profile(alignment, self.params.window_size, self.params.window_offset):
                rows.append((self.triad, label) + window.as_row())
        return rows


def profile_triad(triad, alignment, params=None):
    """
    Find the longest region of a triad alignment and cut it out.

    Args:
        triad (str): Triad identifier used in report rows
        alignment (Alignment): Multiple alignment of the triad genes
        params (ProfileParams, optional): Defaults to DEFAULT_PROFILE_PARAMS

    Returns:
        TriadReport: Region, cut alignment and report rows for the triad

    Raises:
        MalformedAlignmentError: Fewer than two sequences
        InvalidCharacterError: The alignment holds a non-residue character
    """
    if params is None:
        params = DEFAULT_PROFILE_PARAMS
    if alignment.sequence_count < 2:
        raise MalformedAlignmentError(
            f"Triad {triad} needs at least 2 aligned sequences, got {alignment.sequence_count}")

    region = find_longest_region(alignment, params.max_gap)
    cut_alignment = alignment.cut(region.start, region.length)
    full_scores = alignment.scores
    cut_scores = cut_alignment.scores
    LOGGER.debug(f"Triad {triad}: identity {full_scores.identity:.3f} full, "
                 f"{cut_scores.identity:.3f} in region {region}")
    return TriadReport(triad, alignment, region, cut_alignment, params)


def profile_triads(triads, params=None):
    """
    Profile a batch of triads, skipping those that cannot be scored.

    Args:
        triads (Iterable[tuple]): (triad, alignment) pairs where alignment is
                                  an Alignment, a name -> sequence mapping
                                  (a None sequence marks a missing gene), or None
        params (ProfileParams, optional): Defaults to DEFAULT_PROFILE_PARAMS

    Yields:
        TriadReport: One report per triad that could be scored
    """
    for triad, alignment in triads:
        if isinstance(alignment, Mapping):
            try:
                alignment = Alignment.from_optional_mapping(alignment)
            except MalformedAlignmentError as e:
                LOGGER.warning(f"Skipping triad {triad}: {e}")
                continue
        if alignment is None:
            LOGGER.info(f"Skipping triad {triad}: missing sequences")
            continue
        try:
            yield profile_triad(triad, alignment, params)
        except (MalformedAlignmentError, InvalidCharacterError) as e:
            LOGGER.warning(f"Skipping triad {triad}: {e}")


# Subgenomes of a triad, paired in this order for pairwise searches
TRIAD_SUBGENOMES = ('A', 'B', 'D')


@dataclass(frozen=True)
class Hsp:
    """One high-scoring segment pair of a local pairwise search.

    Field names follow BLAST XML: align_len is the aligned length and
    identity the number of identical positions.
    """
    align_len: int
    identity: int


@dataclass(frozen=True)
class PairwiseHit:
    """Longest local alignment found between two genes.

    Fields:
        length: Aligned length of the longest HSP, 0 when there is none
        pident: Percent identity of that HSP (0.0 to 100.0)
    """
    length: int = 0
    pident: float = 0.0


def best_pairwise_hit(hsps):
    """
    Keep the longest HSP of a pairwise search and report its percent identity.

    The first HSP to reach the longest length wins ties. Any object with
    align_len and identity attributes is accepted, such as parsed BLAST XML
    records.

    Args:
        hsps (Iterable): HSPs of every hit of one query/subject search

    Returns:
        PairwiseHit: Length and pident of the longest HSP, or an empty hit

    Raises:
        MalformedAlignmentError: An HSP with a negative length or with more
                                 identities than aligned positions

    Examples:
        >>> best_pairwise_hit([Hsp(120, 90), Hsp(300, 240)])
        PairwiseHit(length=300, pident=80.0)
    """
    best = PairwiseHit()
    for hsp in hsps:
        if hsp.align_len < 0 or not 0 <= hsp.identity <= hsp.align_len:
            raise MalformedAlignmentError(
                f"Invalid HSP: identity={hsp.identity}, align_len={hsp.align_len}")
        if hsp.align_len > best.length:
            best = PairwiseHit(hsp.align_len, 100 * hsp.identity / hsp.align_len)
    return best


@dataclass(frozen=True)
class TriadPair:
    """Two genes of a triad to compare with a pairwise search."""
    triad: str
    query: str
    subject: str
    query_subgenome: str
    subject_subgenome: str
    query_sequence: str = field(default='', repr=False)
    subject_sequence: str = field(default='', repr=False)

    @property
    def aln_type(self):
        return f"{self.query_subgenome}->{self.subject_subgenome}"


def triad_pairs(triad, genes, sequences, subgenomes=TRIAD_SUBGENOMES):
    """
    Gene pairs of one triad, skipping pairs with a missing sequence.

    Pairs follow subgenome order, A->B, A->D then B->D for the default
    subgenomes.

    Args:
        triad (str): Triad identifier
        genes (Mapping[str, str]): Subgenome -> gene name
        sequences (Mapping[str, str]): Gene name -> sequence; an absent or
                                       None sequence marks a gene that was
                                       not found
        subgenomes (Sequence[str]): Subgenomes to pair, in order

    Yields:
        TriadPair: One pair per comparison with both sequences present
    """
    for query_subgenome, subject_subgenome in combinations(subgenomes, 2):
        query = genes.get(query_subgenome)
        subject = genes.get(subject_subgenome)
        query_sequence = sequences.get(query) if query is not None else None
        subject_sequence = sequences.get(subject) if subject is not None else None
        if query_sequence is None or subject_sequence is None:
            LOGGER.info(f"Skipping {query_subgenome}->{subject_subgenome} of triad {triad}: "
                        f"missing sequence")
            continue
        yield TriadPair(triad, query, subject, query_subgenome, subject_subgenome,
                        query_sequence, subject_sequence)


@dataclass(frozen=True)
class PairwiseComparison:
    """Best pairwise hit of one triad gene pair."""
    pair: TriadPair
    hit: PairwiseHit

    def as_row(self):
        """Row matching PAIRWISE_COLUMNS."""
        pair = self.pair
        return (pair.triad, pair.query, pair.subject,
                pair.query_subgenome, pair.subject_subgenome, pair.aln_type,
                self.hit.length, self.hit.pident)


def compare_triad_pairs(triads, sequences, search):
    """
    Summarize pairwise searches between the genes of a batch of triads.

    Args:
        triads (Iterable[tuple]): (triad, genes) pairs, genes mapping
                                  subgenome -> gene name
        sequences (Mapping[str, str]): Gene name -> sequence
        search (Callable[[TriadPair], Iterable]): Returns the HSPs of the
                                                  pairwise search of one pair

    Yields:
        PairwiseComparison: One per pair whose search could be summarized
    """
    for triad, genes in triads:
        for pair in triad_pairs(triad, genes, sequences):
            try:
                hit = best_pairwise_hit(search(pair))
            except MalformedAlignmentError as e:
                LOGGER.warning(f"Skipping {pair.aln_type} of triad {triad}: {e}")
                continue
            yield PairwiseComparison(pair, hit)
