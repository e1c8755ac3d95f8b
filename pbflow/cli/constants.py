"""Constants used across pbflow CLI modules."""

# Number of FASTQ files per sample (read 1 and read 2)
N_FQ_FILES = 2

# Supported container runtimes
CONTAINER_RUNTIMES = ("docker", "none")

# Run keys required by each pipeline input kind
RUN_INPUT_KEYS = {
    "fastq": ("fq",),
    "bam": ("bam",),
    "somatic": ("tumor_bam",),
}
