"""
Reference datasets for LMM validation and examples.
"""

import numpy as np

# Dyestuff - yield of dyestuff (grams of standard colour) from 5 samples
# of each of 6 batches of an intermediate product.
# From R: lme4::Dyestuff - EXACT VALUES
dyestuff_batch = np.repeat(np.array(['A', 'B', 'C', 'D', 'E', 'F']), 5)

dyestuff_yield = np.array([
    1545.0, 1440.0, 1440.0, 1520.0, 1580.0,   # A
    1540.0, 1555.0, 1490.0, 1560.0, 1495.0,   # B
    1595.0, 1550.0, 1605.0, 1510.0, 1560.0,   # C
    1445.0, 1440.0, 1595.0, 1465.0, 1545.0,   # D
    1595.0, 1630.0, 1515.0, 1635.0, 1625.0,   # E
    1520.0, 1455.0, 1450.0, 1480.0, 1445.0,   # F
])

# Reference values for the intercept-only model Yield ~ 1 + (1 | Batch)
DYESTUFF_ML_DEVIANCE_AT_0713 = 327.34216280955366
DYESTUFF_ML_DEVIANCE = 327.3270598811428

# Dyestuff2 - simulated data from Box & Tiao (1973) with the same layout as
# Dyestuff but no batch-to-batch variability.
# From R: lme4::Dyestuff2 - EXACT VALUES
dyestuff2_batch = np.repeat(np.array(['A', 'B', 'C', 'D', 'E', 'F']), 5)

dyestuff2_yield = np.array([
    7.298, 3.846, 2.434, 9.566, 7.990,     # A
    5.220, 6.556, 0.608, 11.788, -0.892,   # B
    0.110, 10.386, 13.434, 5.510, 8.166,   # C
    2.212, 4.852, 7.092, 9.288, 4.980,     # D
    0.282, 9.014, 4.458, 9.446, 7.198,     # E
    1.722, 4.782, 8.106, 0.758, 3.758,     # F
])

# The ML fit of Yield ~ 1 + (1 | Batch) lands on the boundary θ = 0,
# where the deviance equals that of the ordinary linear model.
DYESTUFF2_ML_DEVIANCE = 162.87303665382575

# sleepstudy - average reaction time (ms) per day for 18 subjects in a
# sleep deprivation study (Belenky et al., 2003), days 0 through 9.
# From R: lme4::sleepstudy - EXACT VALUES
sleepstudy_subject = np.repeat(np.array([
    '308', '309', '310', '330', '331', '332', '333', '334', '335',
    '337', '349', '350', '351', '352', '369', '370', '371', '372',
]), 10)

sleepstudy_days = np.tile(np.arange(10, dtype=np.float64), 18)

sleepstudy_reaction = np.array([
    249.5600, 258.7047, 250.8006, 321.4398, 356.8519,
    414.6901, 382.2038, 290.1486, 430.5853, 466.3535,  # 308
    222.7339, 205.2658, 202.9778, 204.7070, 207.7161,
    215.9618, 213.6303, 217.7272, 224.2957, 237.3142,  # 309
    199.0539, 194.3322, 234.3200, 232.8416, 229.3074,
    220.4579, 235.4208, 255.7511, 261.0125, 247.5153,  # 310
    321.5426, 300.4002, 283.8565, 285.1330, 285.7973,
    297.5855, 280.2396, 318.2613, 305.3495, 354.0487,  # 330
    287.6079, 285.0000, 301.8206, 320.1153, 316.2773,
    293.3187, 290.0750, 334.8177, 293.7469, 371.5811,  # 331
    234.8606, 242.8118, 272.9613, 309.7688, 317.4629,
    309.9976, 454.1619, 346.8311, 330.3003, 253.8644,  # 332
    283.8424, 289.5550, 276.7693, 299.8097, 297.1710,
    338.1665, 332.0265, 348.8399, 333.3600, 362.0428,  # 333
    265.4731, 276.2012, 243.3647, 254.6723, 279.0244,
    284.1912, 305.5248, 331.5229, 335.7469, 377.2990,  # 334
    241.6083, 273.9472, 254.4907, 270.8021, 251.4519,
    254.6362, 245.4523, 235.3110, 235.7541, 237.2466,  # 335
    312.3666, 313.8058, 291.6112, 346.1222, 365.7324,
    391.8385, 404.2601, 416.6923, 455.8643, 458.9167,  # 337
    236.1032, 230.3167, 238.9256, 254.9220, 250.7103,
    269.7744, 281.5648, 308.1020, 336.2806, 351.6451,  # 349
    256.2968, 243.4543, 256.2046, 255.5271, 268.9165,
    329.7247, 379.4445, 362.9184, 394.4872, 389.0527,  # 350
    250.5265, 300.0576, 269.8939, 280.5891, 271.8274,
    304.6336, 287.7466, 266.5955, 321.5418, 347.5655,  # 351
    221.6771, 298.1939, 326.8785, 346.8555, 348.7402,
    352.8287, 354.4266, 360.4326, 375.6406, 388.5417,  # 352
    271.9235, 268.4369, 257.2424, 277.6566, 314.8222,
    317.2135, 298.1353, 348.1229, 340.2800, 366.5131,  # 369
    225.2640, 234.5235, 238.9008, 240.4730, 267.5373,
    344.1937, 281.1481, 347.5855, 365.1630, 372.2288,  # 370
    269.8804, 272.4428, 277.8989, 281.7895, 279.1705,
    284.5120, 259.2658, 304.6306, 350.7807, 369.4692,  # 371
    269.4117, 273.4740, 297.5968, 310.6316, 287.1726,
    329.6076, 334.4818, 343.2199, 369.1417, 364.1236,  # 372
])

# Reference values for the ML fit of Reaction ~ 1 + Days + (1 + Days | Subject)
SLEEPSTUDY_ML_DEVIANCE = 1751.9393444663153
SLEEPSTUDY_ML_THETA = np.array([0.9292213024991977, 0.018168364234210234,
                                0.22264488494565465])
