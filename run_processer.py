import sys
import os

import parser as ps
import post_process as pp
import analyser as an
import sanityplots as sanity


def main():

    if len(sys.argv) < 3:
        print("Usage: python run_processer.py "
              "<base_path> <output_dir> [weights_file]")
        sys.exit(1)

    base_path  = sys.argv[1]
    output_dir = sys.argv[2]
    weights    = ps.load_weights(sys.argv[3]) if len(sys.argv) > 3 else None

    nodes = ps.Parser(base_path)
    files = nodes.get_all_h5_paths()
    print(f"Found {len(files)} analysis files in {len(nodes.nodes)} node folders")
    if len(files) == 0:
        print("WARNING: no analysis files found — check base path.")
        sys.exit(1)

    os.makedirs(output_dir, exist_ok=True)
    sanity_dir = os.path.join(output_dir, "SanityPlots")

    # merge all nodes and correct once for detector effects
    mh, results = pp.process(files, weights)

    an.save_hdf5(
        filename = os.path.join(output_dir, 'mixed_harmonics_merged.h5'),
        profiles = mh.run_profiles(),
        settings = mh.settings,
        node_id  = -1,
        results  = results,
    )

    ####  PLOT PLOT PLOT PLOT  ####
    sanity.plot_all(results, sanity_dir)
    ####  PLOT PLOT PLOT PLOT  ####


if __name__ == "__main__":
    main()
