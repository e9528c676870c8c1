"""2-D projection of item embeddings for plotting."""

import numpy as np
from sklearn.decomposition import PCA


def project_2d(embeddings: np.ndarray) -> np.ndarray:
    """Centre ``embeddings`` and project onto the top two principal components.

    Returns ``[N, 2]``; degenerate inputs (fewer than two rows or columns) are
    zero-padded on the missing component.
    """
    embeddings = np.asarray(embeddings, dtype=np.float32)
    out = np.zeros((embeddings.shape[0], 2), dtype=np.float32)
    if embeddings.shape[0] < 2 or embeddings.shape[1] == 0:
        return out
    n = min(2, *embeddings.shape)
    out[:, :n] = PCA(n_components=n, svd_solver="full").fit_transform(embeddings)
    return out
