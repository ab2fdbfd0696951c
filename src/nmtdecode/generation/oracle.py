"""
Shape suffixes convention inspired by
https://medium.com/@NoamShazeer/shape-suffixes-good-coding-style-f836e72e24fd

B: batch size
C: the length of the input on which conditioning is done
N: number of prefixes scored in one call
L: prefix length for the decoder
D: model dimension
V: vocabulary size
"""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, NamedTuple, Protocol, runtime_checkable

import torch
import torch.nn as nn
from torch import device as torch_device

Tensor = torch.Tensor


class OracleOutput(NamedTuple):
    log_probs: Tensor
    cache: Any | None = None


@runtime_checkable
class ScoringOracle(Protocol):
    """Produces next-token log-probabilities for a batch of prefixes.

    `source_indices[i]` names the row of `context` that `prefixes[i]` is conditioned on.
    `caches[i]`, when given, is whatever the oracle returned for the parent of
    `prefixes[i]` on the previous step; an oracle may ignore it.
    """

    @property
    def vocab_size(self) -> int: ...

    def score(
        self,
        prefixes: Sequence[Sequence[int]],
        context: Any,
        source_indices: Sequence[int],
        caches: Sequence[Any | None] | None = None,
    ) -> list[OracleOutput]: ...


def determine_device(device: str | None = None, allow_mps: bool = False) -> torch_device:
    """Determines the appropriate device for model placement.

    Args:
        device: Optional device specification.
        allow_mps: Whether to allow MPS device usage.

    Returns:
        The determined torch.device.
    """
    if device is None:
        if torch.cuda.is_available():
            device = "cuda"
        elif allow_mps and torch.backends.mps.is_available():
            device = "mps"
        else:
            device = "cpu"
    return torch.device(device)


@dataclass
class EncodedSource:
    enc_src_BCD: Tensor
    src_mask_B11C: Tensor

    def __len__(self) -> int:
        return self.enc_src_BCD.size(0)


class TransformerOracle:
    """Adapts an encoder-decoder `nn.Module` to the ScoringOracle protocol.

    The module must expose `encoder(src_BC, src_mask_B11C) -> enc_src_BCD` and
    `decoder(trg_BL, enc_src_BCD, src_mask_B11C, trg_mask_B1LL) -> logits_BLV`, where a
    `None` target mask means causal self-attention.
    """

    def __init__(self, model: nn.Module, vocab_size: int, pad_idx: int, device: torch_device | None = None):
        self.model = model
        self._vocab_size = vocab_size
        self.pad_idx = pad_idx
        self.device = device if device is not None else determine_device()
        self.model.to(self.device)
        self.model.eval()

    def __repr__(self) -> str:
        return f"TransformerOracle(vocab_size={self.vocab_size}, device={self.device})"

    @property
    def vocab_size(self) -> int:
        return self._vocab_size

    def encode(self, src_BC: Tensor) -> EncodedSource:
        src_BC = src_BC.long().to(self.device)
        src_mask_B11C = (src_BC != self.pad_idx).unsqueeze(1).unsqueeze(2)
        with torch.no_grad():
            enc_src_BCD = self.model.encoder(src_BC, src_mask_B11C)
        return EncodedSource(enc_src_BCD=enc_src_BCD, src_mask_B11C=src_mask_B11C)

    def score(
        self,
        prefixes: Sequence[Sequence[int]],
        context: EncodedSource,
        source_indices: Sequence[int],
        caches: Sequence[Any | None] | None = None,
    ) -> list[OracleOutput]:
        N = len(prefixes)
        if N == 0:
            return []
        lengths_N = torch.tensor([len(p) for p in prefixes], dtype=torch.long, device=self.device)
        L = int(lengths_N.max().item())

        # right padding is invisible to earlier positions under the causal mask
        trg_NL = torch.full((N, L), self.pad_idx, dtype=torch.long, device=self.device)
        for i, prefix in enumerate(prefixes):
            trg_NL[i, : len(prefix)] = torch.tensor(list(prefix), dtype=torch.long, device=self.device)

        rows_N = torch.tensor(list(source_indices), dtype=torch.long, device=self.device)
        with torch.no_grad():
            output_NLV = self.model.decoder(
                trg_BL=trg_NL,
                enc_src_BCD=context.enc_src_BCD[rows_N],
                src_mask_B11C=context.src_mask_B11C[rows_N],
                trg_mask_B1LL=None,
            )

        last_NV = output_NLV[torch.arange(N, device=self.device), lengths_N - 1]
        log_probs_NV = torch.log_softmax(last_NV.float(), dim=-1)
        return [OracleOutput(log_probs=log_probs_V) for log_probs_V in log_probs_NV]
