import os

import numpy as np
import matplotlib.pyplot as plt
import matplotlib.cm as cm

import processer as pr


def _label(harmonic, legs=r"\phi_1+\phi_2"):
    n = "" if harmonic == 1 else str(harmonic)
    return rf"$\langle\langle\cos[{n}({legs}-2\phi_3)]\rangle\rangle$"


###################################################### VS MULTIPLICITY ###########################################################

def plot_correlator_vs_m(results, out_dir):
    harmonic = results['settings']['harmonic']
    labels   = results['mult_labels']
    x        = np.arange(len(labels))
    filled   = results['measured_vs_m'] != 0

    fig, axes = plt.subplots(1, 2, figsize=(12, 5))

    axes[0].errorbar(x[filled], results['measured_vs_m'][filled],
                     yerr=results['measured_vs_m_err'][filled],
                     fmt='o', ms=4, color='steelblue', label='measured')
    corrected = results['corrected_vs_m']
    if not np.all(np.isnan(corrected)):
        axes[0].errorbar(x[filled] + 0.15, corrected[filled],
                         yerr=results['corrected_vs_m_err'][filled],
                         fmt='s', ms=4, color='firebrick', label='corrected')
    axes[0].axhline(0, color='k', lw=0.5)
    axes[0].set_ylabel(_label(harmonic))
    axes[0].set_title('3-p correlator vs multiplicity')
    axes[0].legend(fontsize=8)

    bias = results['bias_vs_m']
    if not np.all(np.isnan(bias)):
        axes[1].plot(x[filled], bias[filled], 'o-', ms=4, color='darkorange')
    axes[1].axhline(1, color='k', lw=0.5, ls='--')
    axes[1].set_ylabel('corrected / measured')
    axes[1].set_title('Detector bias vs multiplicity')

    for ax in axes:
        ax.set_xticks(x)
        ax.set_xticklabels(labels, rotation=45, fontsize=7, ha='right')
        ax.set_xlabel('M (RPs)')

    plt.tight_layout()
    out = os.path.join(out_dir, 'correlator_vs_M.pdf')
    plt.savefig(out)
    plt.close(fig)
    print(f"Saved {out}")

###################################################### NON-ISOTROPIC ###########################################################

def plot_non_isotropic_terms(results, out_dir):
    harmonic = results['settings']['harmonic']
    labels   = list(pr.term_labels(harmonic).values())
    terms_m  = results['non_isotropic_terms_vs_m']
    colors   = cm.plasma(np.linspace(0.1, 0.9, len(labels)))

    fig, axes = plt.subplots(1, 2, figsize=(12, 5))

    x = np.arange(len(labels))
    axes[0].errorbar(x, results['non_isotropic_terms'], yerr=results['non_isotropic_terms_err'],
                     fmt='o', ms=5, color='steelblue')
    axes[0].axhline(0, color='k', lw=0.5)
    axes[0].set_xticks(x)
    axes[0].set_xticklabels(labels, rotation=45, fontsize=7, ha='right')
    axes[0].set_title('Non-isotropic terms (integrated)')

    xm = np.arange(terms_m.shape[1])
    for term, lab, color in zip(terms_m, labels, colors):
        axes[1].plot(xm, term, 'o-', ms=3, color=color, label=lab)
    axes[1].axhline(0, color='k', lw=0.5)
    axes[1].set_xticks(xm)
    axes[1].set_xticklabels(results['mult_labels'], rotation=45, fontsize=7, ha='right')
    axes[1].set_title('Non-isotropic terms vs multiplicity')
    axes[1].legend(fontsize=7)

    plt.tight_layout()
    out = os.path.join(out_dir, 'non_isotropic_terms.pdf')
    plt.savefig(out)
    plt.close(fig)
    print(f"Saved {out}")

###################################################### DIFFERENTIAL ###########################################################

def plot_differential(results, out_dir):
    if 'differential' not in results:
        print("  No differential results, skipping differential plot")
        return
    harmonic = results['settings']['harmonic']
    axis_labels = {'PtSum':  r'$(p_{T,1}+p_{T,2})/2$ (GeV)',
                   'PtDiff': r'$|p_{T,1}-p_{T,2}|$ (GeV)'}

    fig, axes = plt.subplots(1, 2, figsize=(12, 5))
    for ax, (sd, res) in zip(axes, results['differential'].items()):
        ok = res['entries'] > 0
        ax.errorbar(res['pt_cents'][ok], res['value'][ok], yerr=res['err'][ok],
                    fmt='o', ms=3, color='steelblue')
        ax.axhline(0, color='k', lw=0.5)
        ax.set_xlabel(axis_labels.get(sd, sd))
        ax.set_ylabel(_label(harmonic, r"\psi_1+\psi_2"))
        ax.set_title(f'Differential correlator vs {sd}')

    plt.tight_layout()
    out = os.path.join(out_dir, 'differential_correlator.pdf')
    plt.savefig(out)
    plt.close(fig)
    print(f"Saved {out}")


def plot_all(results, out_dir):
    os.makedirs(out_dir, exist_ok=True)
    plot_correlator_vs_m(results, out_dir)
    plot_non_isotropic_terms(results, out_dir)
    plot_differential(results, out_dir)
