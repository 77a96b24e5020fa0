import processer as pr
from mixed_harmonics import MixedHarmonics


def merge_files(files, weights=None):
    """
    Add up the all-event profiles of several per-node analysis files.

    All files must have been produced with equal settings. The merged
    instance is returned before finish(), so the detector-effects
    correction is applied once, on the full sample.

    Parameters
    ----------
    files   : list of str — outputs of extractor.py
    weights : dict or None — weight tables, checked against the settings only
              when given; merging never reads them

    Returns
    -------
    mh : MixedHarmonics
    """
    if len(files) == 0:
        raise ValueError("merge_files() needs at least one file")

    files = sorted(files)
    merged = None
    for fname in files:
        settings, profiles, _ = pr.load_hdf5(fname)
        mh = MixedHarmonics.from_profiles(settings, profiles, weights)
        if merged is None:
            merged = mh
        else:
            merged.merge(mh)
        print(f"  merged {fname}  (nEvts so far = {int(merged.multiplicity_rp.sum_w[0])})")
    return merged


def process(files, weights=None):
    """Merge the per-node files and return the final results dict."""
    print(f"Merging {len(files)} analysis files ...")
    mh = merge_files(files, weights)
    return mh, mh.finish()
