"""
causal_signet: from bulk transcriptomics to causal signaling networks.

Analyses:
    1. preprocessing           — count filtering and log-CPM normalization
    2. differential_expression — pyDESeq2 Wald test for one contrast
    3. signed_network          — sign-consistent PKN from OmniPath
    4. tf_activity             — CollecTRI TF activity (decoupler ULM)
    5. pathway_scoring         — PROGENy pathway activity and preranked GSEA
    6. causal_network          — CARNIVAL causal subnetwork (R) and analysis
    7. pipeline                — end-to-end run from a YAML config
"""

__version__ = "0.1.0"
